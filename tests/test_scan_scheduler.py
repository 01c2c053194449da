from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from signal_monitor.services.normalizer import Post, ProfilePosts
from signal_monitor.services.scan_scheduler import ScanScheduler, ScanState, select_new_posts
from signal_monitor.services.signal_store import DueProfile
from signal_monitor.settings import Settings

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
D1 = NOW - timedelta(days=1)
D2 = NOW - timedelta(days=2)


class FakeStore:
    def __init__(self, profiles: list[DueProfile]):
        self.profiles = profiles
        self.events = []
        self.updates: dict[int, tuple[datetime, datetime | None]] = {}
        self.due_calls = []

    async def due_profiles(self, now, limit):
        self.due_calls.append((now, limit))
        return self.profiles[:limit]

    async def insert_events(self, events):
        inserted = 0
        keys = {(e.profile_id, e.post_url, e.keyword) for e in self.events}
        for event in events:
            key = (event.profile_id, event.post_url, event.keyword)
            if key not in keys:
                keys.add(key)
                self.events.append(event)
                inserted += 1
        return inserted

    async def update_profile(self, profile_id, next_scan_at, last_post_at=None):
        self.updates[profile_id] = (next_scan_at, last_post_at)


class FakeScraper:
    def __init__(self, results: list[ProfilePosts], gate: asyncio.Event | None = None):
        self.results = results
        self.gate = gate
        self.calls: list[list[str]] = []

    async def scan_profiles(self, urls, **kwargs):
        self.calls.append(list(urls))
        if self.gate is not None:
            await self.gate.wait()
        return self.results


class FakeNotifier:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    async def send_signal_events(self, url, events):
        self.sent.append((url, list(events)))
        return self.ok


def make_scheduler(store, scraper, notifier=None, **settings_overrides) -> ScanScheduler:
    settings = Settings(**settings_overrides)
    return ScanScheduler(store, scraper, notifier or FakeNotifier(), settings=settings, clock=lambda: NOW)


def profile(pid: int = 1, **kwargs) -> DueProfile:
    kwargs.setdefault("linkedin_url", f"https://www.linkedin.com/in/person-{pid}")
    kwargs.setdefault("keywords", ["funding"])
    return DueProfile(id=pid, **kwargs)


def test_select_new_posts_filters_strictly_after_last_seen():
    posts = [Post("a", "u1", D2), Post("b", "u2", D1)]

    assert [p.url for p in select_new_posts(posts, D2)] == ["u2"]
    assert [p.url for p in select_new_posts(posts, None)] == ["u1", "u2"]


def test_select_new_posts_skips_undated_posts_after_first_scan():
    posts = [Post("a", "u1", None), Post("b", "u2", D1)]

    assert [p.url for p in select_new_posts(posts, D2)] == ["u2"]
    assert len(select_new_posts(posts, None)) == 2


@pytest.mark.asyncio
async def test_new_matching_post_produces_one_event_and_reschedules():
    p = profile(1, last_post_at=D2, plan="basic", webhook_url="https://hooks.test/x")
    result = ProfilePosts(
        linkedin_url=p.linkedin_url,
        posts=[
            Post("Old funding news", "https://linkedin.com/posts/old", D2),
            Post("We closed our funding round", "https://linkedin.com/posts/new", D1),
        ],
    )
    store, notifier = FakeStore([p]), FakeNotifier()
    scheduler = make_scheduler(store, FakeScraper([result]), notifier)

    summary = await scheduler.tick()

    assert len(store.events) == 1
    assert store.events[0].post_url == "https://linkedin.com/posts/new"
    assert store.events[0].keyword == "funding"
    assert store.updates[1] == (NOW + timedelta(hours=24), D1)
    assert len(notifier.sent) == 1
    assert summary["events_inserted"] == 1
    assert summary["webhooks_sent"] == 1
    assert scheduler.state is ScanState.IDLE


@pytest.mark.asyncio
async def test_first_scan_forwards_every_post():
    p = profile(1, last_post_at=None)
    result = ProfilePosts(
        linkedin_url=p.linkedin_url,
        posts=[Post("funding one", "u1", D2), Post("funding two", "u2", D1)],
    )
    store = FakeStore([p])

    await make_scheduler(store, FakeScraper([result])).tick()

    assert sorted(e.post_url for e in store.events) == ["u1", "u2"]
    assert store.updates[1] == (NOW + timedelta(hours=48), D1)


@pytest.mark.asyncio
async def test_profile_without_posts_only_advances_next_scan():
    p = profile(1, last_post_at=D2, plan="business")
    store = FakeStore([p])

    await make_scheduler(store, FakeScraper([ProfilePosts(linkedin_url=p.linkedin_url, posts=[])])).tick()

    assert store.updates[1] == (NOW + timedelta(hours=24), None)
    assert store.events == []


@pytest.mark.asyncio
async def test_no_new_posts_only_advances_next_scan():
    p = profile(1, last_post_at=D1)
    result = ProfilePosts(linkedin_url=p.linkedin_url, posts=[Post("funding", "u1", D2)])
    store, notifier = FakeStore([p]), FakeNotifier()

    await make_scheduler(store, FakeScraper([result]), notifier).tick()

    assert store.updates[1] == (NOW + timedelta(hours=48), None)
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_one_bulk_call_for_whole_batch_with_batch_limit():
    profiles = [profile(i) for i in range(1, 6)]
    store, scraper = FakeStore(profiles), FakeScraper([])

    summary = await make_scheduler(store, scraper, scan_batch_size=3).tick()

    assert len(scraper.calls) == 1
    assert len(scraper.calls[0]) == 3
    assert store.due_calls == [(NOW, 3)]
    assert summary["profiles_due"] == 3


@pytest.mark.asyncio
async def test_failure_in_one_profile_does_not_abort_batch():
    good, bad = profile(1), profile(2)
    results = [
        ProfilePosts(linkedin_url=bad.linkedin_url, posts=[Post("funding", "bad-url", D1)]),
        ProfilePosts(linkedin_url=good.linkedin_url, posts=[Post("funding", "good-url", D1)]),
    ]

    class FlakyStore(FakeStore):
        async def insert_events(self, events):
            if events[0].profile_id == 2:
                raise RuntimeError("db hiccup")
            return await super().insert_events(events)

    store = FlakyStore([good, bad])
    summary = await make_scheduler(store, FakeScraper(results)).tick()

    assert summary["profiles_failed"] == 1
    assert summary["profiles_processed"] == 1
    assert [e.post_url for e in store.events] == ["good-url"]
    assert 1 in store.updates and 2 not in store.updates


@pytest.mark.asyncio
async def test_unmatched_result_is_skipped():
    p = profile(1)
    results = [ProfilePosts(linkedin_url="https://www.linkedin.com/in/stranger", posts=[Post("funding", "u", D1)])]
    store = FakeStore([p])

    summary = await make_scheduler(store, FakeScraper(results)).tick()

    assert summary["unmatched"] == 1
    assert store.events == []
    assert store.updates == {}


@pytest.mark.asyncio
async def test_webhook_failure_does_not_fail_scan():
    p = profile(1, webhook_url="https://hooks.test/down")
    result = ProfilePosts(linkedin_url=p.linkedin_url, posts=[Post("funding", "u1", D1)])
    store, notifier = FakeStore([p]), FakeNotifier(ok=False)

    summary = await make_scheduler(store, FakeScraper([result]), notifier).tick()

    assert summary["events_inserted"] == 1
    assert summary["webhooks_sent"] == 0
    assert 1 in store.updates


@pytest.mark.asyncio
async def test_no_webhook_configured_sends_nothing():
    p = profile(1, webhook_url=None)
    result = ProfilePosts(linkedin_url=p.linkedin_url, posts=[Post("funding", "u1", D1)])
    notifier = FakeNotifier()

    await make_scheduler(FakeStore([p]), FakeScraper([result]), notifier).tick()

    assert notifier.sent == []


@pytest.mark.asyncio
async def test_overlapping_tick_is_dropped():
    gate = asyncio.Event()
    store, scraper = FakeStore([profile(1)]), FakeScraper([], gate=gate)
    scheduler = make_scheduler(store, scraper)

    first = asyncio.create_task(scheduler.tick())
    await asyncio.sleep(0)
    while not scraper.calls:
        await asyncio.sleep(0)

    assert scheduler.state is ScanState.SCANNING
    assert await scheduler.tick() is None

    gate.set()
    summary = await first
    assert summary["profiles_due"] == 1
    assert len(scraper.calls) == 1
    assert scheduler.state is ScanState.IDLE


@pytest.mark.asyncio
async def test_failed_bulk_scan_releases_state():
    class BrokenScraper:
        async def scan_profiles(self, urls, **kwargs):
            raise TimeoutError("apify down")

    scheduler = make_scheduler(FakeStore([profile(1)]), BrokenScraper())

    with pytest.raises(TimeoutError):
        await scheduler.tick()
    assert scheduler.state is ScanState.IDLE


@pytest.mark.asyncio
async def test_nothing_due_skips_scrape():
    scraper = FakeScraper([])

    summary = await make_scheduler(FakeStore([]), scraper).tick()

    assert summary["profiles_due"] == 0
    assert scraper.calls == []


@pytest.mark.asyncio
async def test_profiles_sharing_a_linkedin_url_are_all_processed():
    first = profile(1, linkedin_url="https://www.linkedin.com/in/ceo")
    second = profile(2, linkedin_url="https://www.linkedin.com/in/ceo/", webhook_url="https://hooks.test/b")
    result = ProfilePosts(linkedin_url=first.linkedin_url, posts=[Post("Our funding round closed", "u1", D1)])
    store, scraper, notifier = FakeStore([first, second]), FakeScraper([result]), FakeNotifier()

    summary = await make_scheduler(store, scraper, notifier).tick()

    assert scraper.calls == [["https://www.linkedin.com/in/ceo"]]
    assert sorted(store.updates) == [1, 2]
    assert sorted(e.profile_id for e in store.events) == [1, 2]
    assert summary["profiles_processed"] == 2
    assert summary["events_inserted"] == 2
    assert [url for url, _ in notifier.sent] == ["https://hooks.test/b"]


@pytest.mark.asyncio
async def test_shared_url_failure_is_isolated_per_profile():
    first = profile(1, linkedin_url="https://www.linkedin.com/in/ceo")
    second = profile(2, linkedin_url="https://linkedin.com/in/ceo")
    result = ProfilePosts(linkedin_url=first.linkedin_url, posts=[Post("funding", "u1", D1)])

    class FlakyStore(FakeStore):
        async def insert_events(self, events):
            if events[0].profile_id == 1:
                raise RuntimeError("db hiccup")
            return await super().insert_events(events)

    store = FlakyStore([first, second])
    summary = await make_scheduler(store, FakeScraper([result])).tick()

    assert summary["profiles_failed"] == 1
    assert summary["profiles_processed"] == 1
    assert list(store.updates) == [2]


def test_cancel_when_idle_is_a_no_op():
    scheduler = make_scheduler(FakeStore([]), FakeScraper([]))

    assert scheduler.cancel() is False
    assert scheduler.state is ScanState.IDLE
