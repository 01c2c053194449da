from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("APIFY_TOKEN", "test-token")
os.environ.setdefault("APIFY_RETRY_BACKOFF_SEC", "0")
os.environ.setdefault("ENRICHMENT_BATCH_DELAY_SEC", "0")

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from signal_monitor.db import Base  # noqa: E402


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'signal_monitor.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
