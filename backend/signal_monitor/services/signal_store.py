"""
Persistence for monitored profiles, signal events and engagement scans.

Both stores take an ``async_sessionmaker`` and open one short session per call,
so they can be shared by the scheduler job and request handlers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signal_monitor.models import (
    Account,
    EngagementScan,
    EngagerRecord,
    MonitoredProfile,
    ScanStatus,
    SignalEvent,
)
from signal_monitor.services.matching import DetectedSignal, keywords_for_signal_types

logger = logging.getLogger(__name__)

SCAN_COUNTERS = ("total_engagers", "unique_profiles", "profiles_enriched", "companies_enriched")


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class DueProfile:
    id: int
    linkedin_url: str
    keywords: list[str] = field(default_factory=list)
    last_post_at: datetime | None = None
    next_scan_at: datetime | None = None
    plan: str = "free"
    webhook_url: str | None = None


class SignalStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add_profile(
        self,
        account_id: int,
        linkedin_url: str,
        keywords: Iterable[str] | None = None,
        signal_types: Iterable[str] = (),
        *,
        now: datetime | None = None,
    ) -> MonitoredProfile:
        """Register a profile for monitoring. It is due immediately.

        Explicit keywords come first, then template keywords for ``signal_types``;
        duplicates are dropped.
        """
        merged: list[str] = []
        for keyword in list(keywords or []) + keywords_for_signal_types(signal_types):
            keyword = keyword.strip()
            if keyword and keyword not in merged:
                merged.append(keyword)
        if not merged:
            raise ValueError("keywords must be a non-empty list")

        profile = MonitoredProfile(
            account_id=account_id,
            linkedin_url=linkedin_url.strip(),
            keywords=merged,
            next_scan_at=now or datetime.now(timezone.utc),
        )
        async with self.session_factory() as session:
            session.add(profile)
            await session.commit()
            await session.refresh(profile)
        logger.info("Profile %s added for account %s with %d keywords", profile.id, account_id, len(merged))
        return profile

    async def due_profiles(self, now: datetime, limit: int) -> list[DueProfile]:
        """Profiles with next_scan_at <= now, oldest due first."""
        stmt = (
            select(MonitoredProfile, Account.plan, Account.webhook_url)
            .join(Account, Account.id == MonitoredProfile.account_id)
            .where(MonitoredProfile.next_scan_at <= now)
            .order_by(MonitoredProfile.next_scan_at.asc(), MonitoredProfile.id.asc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            DueProfile(
                id=profile.id,
                linkedin_url=profile.linkedin_url,
                keywords=list(profile.keywords or []),
                last_post_at=as_utc(profile.last_post_at),
                next_scan_at=as_utc(profile.next_scan_at),
                plan=plan or "free",
                webhook_url=webhook_url,
            )
            for profile, plan, webhook_url in rows
        ]

    async def insert_events(self, events: Iterable[DetectedSignal]) -> int:
        """Insert events, silently skipping (profile, url, keyword) duplicates. Returns rows inserted."""
        inserted = 0
        async with self.session_factory() as session:
            conn = await session.connection()
            insert = pg_insert if conn.dialect.name == "postgresql" else sqlite_insert
            for event in events:
                stmt = (
                    insert(SignalEvent)
                    .values(
                        profile_id=event.profile_id,
                        keyword=event.keyword,
                        post_url=event.post_url,
                        post_date=event.post_date,
                        snippet=event.snippet,
                        detected_at=event.detected_at,
                    )
                    .on_conflict_do_nothing(index_elements=["profile_id", "post_url", "keyword"])
                )
                result = await session.execute(stmt)
                inserted += max(result.rowcount or 0, 0)
            await session.commit()
        return inserted

    async def update_profile(
        self,
        profile_id: int,
        next_scan_at: datetime,
        last_post_at: datetime | None = None,
    ) -> None:
        """Touch only next_scan_at and last_post_at; neither ever moves backwards."""
        async with self.session_factory() as session:
            profile = await session.get(MonitoredProfile, profile_id)
            if profile is None:
                logger.warning("Profile %s vanished before update", profile_id)
                return
            current_next = as_utc(profile.next_scan_at)
            if current_next is None or next_scan_at > current_next:
                profile.next_scan_at = next_scan_at
            current_last = as_utc(profile.last_post_at)
            if last_post_at is not None and (current_last is None or last_post_at > current_last):
                profile.last_post_at = last_post_at
            await session.commit()


class EngagementScanStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        scan_id: str,
        post_url: str,
        engagement_types: list[str],
        limit_per_type: int,
        account_id: int | None = None,
    ) -> EngagementScan:
        scan = EngagementScan(
            id=scan_id,
            account_id=account_id,
            post_url=post_url,
            engagement_types=list(engagement_types),
            limit_per_type=limit_per_type,
            status=ScanStatus.processing.value,
            total_engagers=0,
            unique_profiles=0,
            profiles_enriched=0,
            companies_enriched=0,
        )
        async with self.session_factory() as session:
            session.add(scan)
            await session.commit()
            await session.refresh(scan)
        return scan

    async def update_progress(self, scan_id: str, counters: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            scan = await session.get(EngagementScan, scan_id)
            if scan is None:
                return
            for name in SCAN_COUNTERS:
                if name in counters:
                    setattr(scan, name, int(counters[name]))
            await session.commit()

    async def complete(self, scan_id: str, rows: list[dict[str, Any]], counters: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            scan = await session.get(EngagementScan, scan_id)
            if scan is None:
                logger.warning("Engagement scan %s vanished before completion", scan_id)
                return
            stored: set[str] = set()
            for row in rows:
                if row["linkedin_url"] in stored:
                    logger.warning("Scan %s: duplicate enriched URL %s skipped", scan_id, row["linkedin_url"])
                    continue
                stored.add(row["linkedin_url"])
                session.add(EngagerRecord(scan_id=scan_id, **row))
            for name in SCAN_COUNTERS:
                if name in counters:
                    setattr(scan, name, int(counters[name]))
            scan.status = ScanStatus.completed.value
            scan.completed_at = datetime.now(timezone.utc)
            await session.commit()

    async def fail(self, scan_id: str, error_message: str) -> None:
        async with self.session_factory() as session:
            scan = await session.get(EngagementScan, scan_id)
            if scan is None:
                return
            scan.status = ScanStatus.failed.value
            scan.error_message = error_message[:2000]
            await session.commit()

    async def get(self, scan_id: str) -> EngagementScan | None:
        async with self.session_factory() as session:
            return await session.get(EngagementScan, scan_id)

    async def list_scans(self, limit: int = 20, offset: int = 0) -> tuple[list[EngagementScan], int]:
        async with self.session_factory() as session:
            total = (await session.execute(select(func.count()).select_from(EngagementScan))).scalar_one()
            scans = (
                await session.execute(
                    select(EngagementScan)
                    .order_by(EngagementScan.created_at.desc(), EngagementScan.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).scalars().all()
        return list(scans), int(total)

    async def engagers(self, scan_id: str) -> list[EngagerRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(EngagerRecord).where(EngagerRecord.scan_id == scan_id).order_by(EngagerRecord.id.asc())
            )
            return list(result.scalars().all())
