"""
Engagement pipeline: scrape the people who engaged with a post, merge duplicates,
enrich profiles and (selectively) companies in bounded batches, export CSV.

Stages:
    scrape -> deduplicate -> enrich profiles -> enrich companies -> combine -> export

All mutable state (dedup map, counters) lives in one ``run`` call. Enrichment runs
in fixed-size batches joined with ``gather(return_exceptions=True)`` and separated
by a fixed delay; one failed lookup degrades only its own row.
"""
from __future__ import annotations

import asyncio
import csv
import inspect
import io
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, TypeVar

from signal_monitor.services.linkedin_scraper import LinkedInScraper
from signal_monitor.services.normalizer import COMMENT_LABEL, CompanyInfo, ProfileInfo
from signal_monitor.services.signal_store import EngagementScanStore
from signal_monitor.settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

COMMENT_TYPE = "comment"
REACTION_TYPES = ("like", "love", "celebrate", "support", "insightful", "curious", "funny")
ENGAGEMENT_TYPES = REACTION_TYPES + (COMMENT_TYPE,)

CSV_COLUMNS: list[tuple[str, str]] = [
    ("Name", "name"),
    ("Job Title", "job_title"),
    ("Location", "location"),
    ("Industry", "industry"),
    ("Profile URL", "linkedin_url"),
    ("Total Connections", "total_connections"),
    ("Follower Count", "follower_count"),
    ("Company Name", "company_name"),
    ("Employee Size", "employee_size"),
    ("Company Location", "company_location"),
    ("Company Profile URL", "company_profile_url"),
    ("Reaction Type", "reaction_type"),
]

ProgressCallback = Callable[[dict[str, int]], Any]


@dataclass
class Engager:
    linkedin_url: str
    labels: list[str] = field(default_factory=list)
    comment_text: str | None = None

    @property
    def reaction_type(self) -> str:
        return ", ".join(self.labels)

    def add_label(self, label: str) -> None:
        if label and label not in self.labels:
            self.labels.append(label)


@dataclass
class EngagerRow:
    name: str
    job_title: str
    location: str
    industry: str
    linkedin_url: str
    total_connections: int
    follower_count: int
    company_name: str
    employee_size: str
    company_location: str
    company_profile_url: str
    reaction_type: str
    comment_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EngagementResult:
    rows: list[EngagerRow]
    total_engagers: int
    unique_profiles: int
    profiles_enriched: int
    companies_enriched: int
    csv: str

    @property
    def counters(self) -> dict[str, int]:
        return {
            "total_engagers": self.total_engagers,
            "unique_profiles": self.unique_profiles,
            "profiles_enriched": self.profiles_enriched,
            "companies_enriched": self.companies_enriched,
        }


def engager_key(url: str) -> str:
    """Merge key: query and trailing slash stripped, lowercased."""
    return url.split("?", 1)[0].strip().rstrip("/").lower()


def deduplicate(records: Iterable[tuple[str, str, str | None]]) -> list[Engager]:
    """Merge (url, label, comment) records by key. The first record seen keeps its URL."""
    seen: dict[str, Engager] = {}
    for url, label, comment in records:
        if not url:
            logger.warning("Skipping engager with no URL")
            continue
        key = engager_key(url)
        existing = seen.get(key)
        if existing is None:
            engager = Engager(linkedin_url=url, comment_text=comment or None)
            engager.add_label(label)
            seen[key] = engager
            continue
        existing.add_label(label)
        if comment and not existing.comment_text:
            existing.comment_text = comment
    return list(seen.values())


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def combine(engager: Engager, profile: ProfileInfo, companies: Mapping[str, CompanyInfo]) -> EngagerRow:
    company = companies.get(profile.company_linkedin_url) if profile.company_linkedin_url else None
    company = company or CompanyInfo()
    return EngagerRow(
        name=profile.full_name or "Unknown",
        job_title=profile.job_title or "",
        location=profile.location or "",
        industry=company.industry or "",
        linkedin_url=profile.linkedin_url or engager.linkedin_url,
        total_connections=profile.connections_count or 0,
        follower_count=profile.follower_count or 0,
        company_name=profile.company_name or company.name or "",
        employee_size=company.employee_size or "",
        company_location=company.location or "",
        company_profile_url=profile.company_linkedin_url or "",
        reaction_type=engager.reaction_type,
        comment_text=engager.comment_text,
    )


def render_csv(rows: Iterable[Mapping[str, Any] | EngagerRow]) -> str:
    """Header plus one row per engager; fields with comma, quote or newline are quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL)
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for row in rows:
        data = row.to_dict() if isinstance(row, EngagerRow) else row
        writer.writerow(["" if data.get(key) is None else data.get(key) for _, key in CSV_COLUMNS])
    return buffer.getvalue()


class EngagementPipeline:
    def __init__(
        self,
        scraper: LinkedInScraper,
        *,
        batch_size: int | None = None,
        batch_delay_s: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.scraper = scraper
        self.batch_size = batch_size or settings.enrichment_batch_size
        self.batch_delay_s = settings.enrichment_batch_delay_sec if batch_delay_s is None else batch_delay_s
        self._sleep = sleep

    async def run(
        self,
        post_url: str,
        engagement_types: Sequence[str],
        limit_per_type: int,
        on_progress: ProgressCallback | None = None,
    ) -> EngagementResult:
        counters = {"total_engagers": 0, "unique_profiles": 0, "profiles_enriched": 0, "companies_enriched": 0}

        records = await self._scrape(post_url, engagement_types, limit_per_type)
        counters["total_engagers"] = len(records)
        await self._report(on_progress, counters)

        engagers = deduplicate(records)
        counters["unique_profiles"] = len(engagers)
        logger.info(
            "Deduplicated engagers: total=%d unique=%d duplicates=%d",
            len(records),
            len(engagers),
            len(records) - len(engagers),
        )

        to_enrich = engagers[:limit_per_type]

        async def profile_done(done: int) -> None:
            counters["profiles_enriched"] = done
            await self._report(on_progress, counters)

        profiles = await self._run_batches(
            to_enrich,
            lambda e: self.scraper.enrich_profile(e.linkedin_url),
            lambda e: ProfileInfo.fallback(e.linkedin_url),
            profile_done,
            label="profile",
        )

        company_urls: list[str] = []
        for profile in profiles:
            url = profile.company_linkedin_url
            if profile.needs_company_enrichment and url and url not in company_urls:
                company_urls.append(url)
        logger.info("Starting selective company enrichment: %d companies", len(company_urls))

        async def company_done(done: int) -> None:
            counters["companies_enriched"] = done
            await self._report(on_progress, counters)

        companies = await self._run_batches(
            company_urls,
            self.scraper.enrich_company,
            lambda _url: CompanyInfo(),
            company_done,
            label="company",
        )
        company_map = dict(zip(company_urls, companies))

        rows = [combine(engager, profile, company_map) for engager, profile in zip(to_enrich, profiles)]
        logger.info(
            "Engagement scan finished: rows=%d unique=%d companies=%d",
            len(rows),
            counters["unique_profiles"],
            counters["companies_enriched"],
        )
        return EngagementResult(rows=rows, csv=render_csv(rows), **counters)

    async def _scrape(
        self,
        post_url: str,
        engagement_types: Sequence[str],
        limit_per_type: int,
    ) -> list[tuple[str, str, str | None]]:
        types = {t.lower() for t in engagement_types}
        records: list[tuple[str, str, str | None]] = []

        # the reactions provider returns every category in one job
        if types - {COMMENT_TYPE}:
            reactions = await self.scraper.scrape_reactions(post_url, limit_per_type)
            records.extend((r.profile_url, r.reaction_type, None) for r in reactions if r.profile_url)
        if COMMENT_TYPE in types:
            comments = await self.scraper.scrape_comments(post_url, limit_per_type)
            records.extend((c.profile_url, COMMENT_LABEL, c.comment_text or None) for c in comments if c.profile_url)
        return records

    async def _run_batches(
        self,
        items: Sequence[T],
        call: Callable[[T], Awaitable[R]],
        fallback: Callable[[T], R],
        on_batch: Callable[[int], Awaitable[None]],
        *,
        label: str,
    ) -> list[R]:
        results: list[R] = []
        batches = chunked(items, self.batch_size)
        for index, batch in enumerate(batches):
            outcomes = await asyncio.gather(*(call(item) for item in batch), return_exceptions=True)
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Error enriching %s %s: %s", label, item, outcome)
                    results.append(fallback(item))
                else:
                    results.append(outcome)
            await on_batch(len(results))
            if index < len(batches) - 1:
                await self._sleep(self.batch_delay_s)
        return results

    @staticmethod
    async def _report(on_progress: ProgressCallback | None, counters: dict[str, int]) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(dict(counters))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning("Progress callback failed: %s", exc)


async def run_engagement_scan(
    scan_id: str,
    post_url: str,
    engagement_types: Sequence[str],
    limit_per_type: int,
    *,
    store: EngagementScanStore,
    pipeline: EngagementPipeline,
) -> EngagementResult | None:
    """Drive one scan from Processing to Completed, or to Failed on a stage-level error."""
    logger.info("[engagement_scan] %s started: %s types=%s limit=%d", scan_id, post_url, list(engagement_types), limit_per_type)
    try:
        result = await pipeline.run(
            post_url,
            engagement_types,
            limit_per_type,
            on_progress=lambda counters: store.update_progress(scan_id, counters),
        )
    except Exception as exc:
        logger.exception("[engagement_scan] %s failed", scan_id)
        await store.fail(scan_id, str(exc) or exc.__class__.__name__)
        return None

    await store.complete(scan_id, [row.to_dict() for row in result.rows], result.counters)
    logger.info("[engagement_scan] %s completed: %s", scan_id, result.counters)
    return result
