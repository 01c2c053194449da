"""
Signal scan cycle.

A tick selects due profiles, scans them with one bulk scrape, forwards only posts
newer than the last one seen to keyword matching, persists events idempotently,
notifies webhooks and reschedules each profile by its account plan.

At most one cycle runs at a time. A tick arriving while a cycle is active is
dropped, never queued.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from signal_monitor.services.linkedin_scraper import LinkedInScraper
from signal_monitor.services.matching import DetectedSignal, process_post
from signal_monitor.services.normalizer import Post, ProfilePosts, normalize_profile_url
from signal_monitor.services.signal_store import DueProfile, SignalStore
from signal_monitor.services.webhook import WebhookNotifier
from signal_monitor.settings import Settings, get_settings

logger = logging.getLogger("scheduler")


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def select_new_posts(posts: list[Post], last_seen: datetime | None) -> list[Post]:
    """Posts strictly newer than ``last_seen``; everything on a first scan."""
    if last_seen is None:
        return list(posts)
    return [p for p in posts if p.posted_at is not None and p.posted_at > last_seen]


def latest_post_date(posts: list[Post]) -> datetime | None:
    dates = [p.posted_at for p in posts if p.posted_at is not None]
    return max(dates) if dates else None


class ScanScheduler:
    def __init__(
        self,
        store: SignalStore,
        scraper: LinkedInScraper,
        notifier: WebhookNotifier | None = None,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.scraper = scraper
        self.notifier = notifier or WebhookNotifier()
        self.settings = settings or get_settings()
        self.clock = clock
        self._state = ScanState.IDLE
        self._cancel_event: asyncio.Event | None = None

    @property
    def state(self) -> ScanState:
        return self._state

    def _try_enter(self) -> bool:
        # no await between the check and the set, so this is atomic on the event loop
        if self._state is ScanState.SCANNING:
            return False
        self._state = ScanState.SCANNING
        return True

    async def tick(self) -> dict[str, Any] | None:
        """Run one cycle unless one is already active. Returns the summary, or None if dropped."""
        if not self._try_enter():
            logger.warning("[signal_scan] Scan already in progress, dropping tick")
            return None
        self._cancel_event = asyncio.Event()
        try:
            return await self.run_scan()
        finally:
            self._cancel_event = None
            self._state = ScanState.IDLE

    def cancel(self) -> bool:
        """Abort the wait on the active cycle's bulk scrape. Returns False when idle."""
        if self._cancel_event is None:
            return False
        logger.info("[signal_scan] Cancelling active scan")
        self._cancel_event.set()
        return True

    async def run_scan(self) -> dict[str, Any]:
        now = self.clock()
        summary: dict[str, Any] = {
            "profiles_due": 0,
            "results": 0,
            "profiles_processed": 0,
            "profiles_failed": 0,
            "unmatched": 0,
            "events_detected": 0,
            "events_inserted": 0,
            "webhooks_sent": 0,
        }

        profiles = await self.store.due_profiles(now, self.settings.scan_batch_size)
        summary["profiles_due"] = len(profiles)
        if not profiles:
            logger.info("[signal_scan] No profiles due for scanning")
            return summary

        logger.info("[signal_scan] Processing %d profiles", len(profiles))
        # several accounts may watch the same LinkedIn profile
        by_url: dict[str, list[DueProfile]] = defaultdict(list)
        for p in profiles:
            by_url[normalize_profile_url(p.linkedin_url)].append(p)

        results = await self.scraper.scan_profiles(
            [group[0].linkedin_url for group in by_url.values()],
            cancel_event=self._cancel_event,
        )
        summary["results"] = len(results)

        for result in results:
            watchers = by_url.get(normalize_profile_url(result.linkedin_url))
            if not watchers:
                summary["unmatched"] += 1
                logger.warning("[signal_scan] No matching profile for scan result %s", result.linkedin_url)
                continue
            for profile in watchers:
                try:
                    detected, inserted, notified = await self._process_result(profile, result, now)
                except Exception as exc:
                    summary["profiles_failed"] += 1
                    logger.error(
                        "[signal_scan] Failed to process profile %s (%s): %s", profile.id, profile.linkedin_url, exc
                    )
                    continue
                summary["profiles_processed"] += 1
                summary["events_detected"] += detected
                summary["events_inserted"] += inserted
                summary["webhooks_sent"] += int(notified)

        missing = len(profiles) - summary["profiles_processed"] - summary["profiles_failed"]
        if missing > 0:
            logger.info("[signal_scan] %d profiles returned no result and stay due", missing)
        logger.info("[signal_scan] Completed: %s", summary)
        return summary

    async def _process_result(self, profile: DueProfile, result: ProfilePosts, now: datetime) -> tuple[int, int, bool]:
        next_scan_at = now + timedelta(hours=self.settings.scan_interval_hours_for(profile.plan))

        if not result.posts:
            logger.info("[signal_scan] No posts found for profile %s", profile.id)
            await self.store.update_profile(profile.id, next_scan_at)
            return 0, 0, False

        new_posts = select_new_posts(result.posts, profile.last_post_at)
        if not new_posts:
            logger.info("[signal_scan] No new posts since last scan for profile %s", profile.id)
            await self.store.update_profile(profile.id, next_scan_at)
            return 0, 0, False

        logger.info("[signal_scan] Found %d new posts for profile %s", len(new_posts), profile.id)
        events: list[DetectedSignal] = []
        for post in new_posts:
            events.extend(
                process_post(
                    post,
                    profile.keywords,
                    profile.id,
                    max_snippet_length=self.settings.snippet_max_length,
                    now=now,
                )
            )

        inserted = 0
        notified = False
        if events:
            inserted = await self.store.insert_events(events)
            logger.info(
                "[signal_scan] Profile %s: %d events detected, %d new",
                profile.id,
                len(events),
                inserted,
            )
            if profile.webhook_url:
                notified = await self.notifier.send_signal_events(profile.webhook_url, events)

        await self.store.update_profile(profile.id, next_scan_at, latest_post_date(result.posts))
        return len(events), inserted, notified
