from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from coding_metrics.cache import InMemoryMetricsStore, MetricsCache, is_cache_eligible
from coding_metrics.errors import RateLimitError
from coding_metrics.models import Platform, PlatformMetrics
from coding_metrics.normalization import build_metrics
from coding_metrics.telemetry import TelemetryEvent, clear_listeners, register_listener

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
TTL = timedelta(minutes=5)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _record(
    platform: Platform,
    handle: str,
    fetched_at: datetime,
    *,
    solved: Optional[int] = 10,
    rating: Optional[int] = 1500,
) -> PlatformMetrics:
    primary = {
        Platform.GITHUB: "publicRepos",
        Platform.LEETCODE: "totalSolved",
        Platform.CODEFORCES: "problemsSolved",
        Platform.CODECHEF: "problemsSolved",
    }[platform]
    return build_metrics(
        platform,
        handle,
        f"https://example.test/{handle}",
        fetched_at=fetched_at,
        rating_or_score=rating,
        counters={primary: solved, "other": None if solved is not None else 1},
    )


class _FakeClient:
    def __init__(self, clock: _Clock, platform: Platform = Platform.CODEFORCES) -> None:
        self.clock = clock
        self.platform = platform
        self.calls: List[str] = []
        self.error: Optional[Exception] = None
        self.solved: Optional[int] = 10

    async def fetch_profile(self, handle: str) -> PlatformMetrics:
        self.calls.append(handle)
        if self.error is not None:
            raise self.error
        return _record(self.platform, handle, self.clock(), solved=self.solved)


def _cache(platform: Platform = Platform.CODEFORCES):
    clock = _Clock(START)
    client = _FakeClient(clock, platform)
    store = InMemoryMetricsStore(clock=clock)
    cache = MetricsCache(store, {platform: client}, {platform: TTL}, clock=clock)
    return cache, client, store, clock


def _get(cache: MetricsCache, handle: str = "tourist", *, platform: Platform = Platform.CODEFORCES, **kwargs):
    return asyncio.run(cache.get_or_fetch("user-1", platform, handle, **kwargs))


def test_second_call_within_ttl_is_served_from_store() -> None:
    cache, client, _, clock = _cache()

    first = _get(cache)
    clock.now = START + timedelta(minutes=1)
    second = _get(cache)

    assert client.calls == ["tourist"]
    assert first.cached is False
    assert second.cached is True
    assert second.metrics == first.metrics
    assert second.cache_age_seconds == pytest.approx(60.0)


def test_ttl_boundary_is_exclusive() -> None:
    cache, client, _, clock = _cache()
    _get(cache)

    clock.now = START + TTL - timedelta(milliseconds=1)
    assert _get(cache).cached is True

    clock.now = START + TTL
    assert _get(cache).cached is False
    assert len(client.calls) == 2


def test_force_refresh_bypasses_fresh_record() -> None:
    cache, client, _, _ = _cache()
    _get(cache)

    result = _get(cache, force_refresh=True)

    assert result.cached is False
    assert len(client.calls) == 2


def test_handle_change_triggers_refetch() -> None:
    cache, client, store, _ = _cache()
    _get(cache, "tourist")

    result = _get(cache, "Petr")

    assert result.cached is False
    assert client.calls == ["tourist", "Petr"]
    assert store.get("user-1", Platform.CODEFORCES).handle == "Petr"


def test_handle_comparison_ignores_case() -> None:
    cache, client, _, _ = _cache()
    _get(cache, "Tourist")

    assert _get(cache, "tourist").cached is True
    assert len(client.calls) == 1


def test_partial_record_missing_primary_value_is_refetched() -> None:
    cache, client, store, clock = _cache()
    store.upsert("user-1", Platform.CODEFORCES, _record(Platform.CODEFORCES, "tourist", START, solved=None))
    clock.now = START + timedelta(seconds=30)

    result = _get(cache)

    assert result.cached is False
    assert client.calls == ["tourist"]
    assert result.metrics.counters["problemsSolved"] == 10


def test_partial_record_with_primary_value_is_served() -> None:
    cache, client, store, clock = _cache()
    record = _record(Platform.CODEFORCES, "tourist", START)
    assert record.partial is True
    store.upsert("user-1", Platform.CODEFORCES, record)
    clock.now = START + timedelta(seconds=30)

    result = _get(cache)

    assert result.cached is True
    assert client.calls == []


def test_codechef_eligibility_follows_rating() -> None:
    unrated = _record(Platform.CODECHEF, "chef", START, rating=None)
    rated = _record(Platform.CODECHEF, "chef", START, rating=1800)

    assert is_cache_eligible(unrated) is False
    assert is_cache_eligible(rated) is True


def test_future_dated_record_is_not_trusted() -> None:
    cache, client, store, _ = _cache()
    store.upsert("user-1", Platform.CODEFORCES, _record(Platform.CODEFORCES, "tourist", START + timedelta(minutes=1)))

    result = _get(cache)

    assert result.cached is False
    assert client.calls == ["tourist"]
    assert store.get("user-1", Platform.CODEFORCES).fetched_at == START
    assert _get(cache).cached is True
    assert len(client.calls) == 1

def test_fetch_error_propagates_without_serving_stale_record() -> None:
    cache, client, store, clock = _cache()
    _get(cache)
    clock.now = START + TTL + timedelta(seconds=1)
    client.error = RateLimitError("slow down", platform="codeforces")

    with pytest.raises(RateLimitError):
        _get(cache)

    stored = store.get("user-1", Platform.CODEFORCES)
    assert stored is not None
    assert stored.fetched_at == START


def test_store_rejects_older_writes() -> None:
    store = InMemoryMetricsStore(clock=lambda: START + timedelta(hours=1))
    newer = _record(Platform.LEETCODE, "ada", START + timedelta(minutes=1))
    older = _record(Platform.LEETCODE, "ada", START)

    assert store.upsert("user-1", Platform.LEETCODE, newer) is True
    assert store.upsert("user-1", Platform.LEETCODE, older) is False
    assert store.get("user-1", Platform.LEETCODE).fetched_at == newer.fetched_at
    assert store.writes == 1


def test_store_rejects_mismatched_platform() -> None:
    store = InMemoryMetricsStore()

    with pytest.raises(ValueError):
        store.upsert("user-1", Platform.GITHUB, _record(Platform.LEETCODE, "ada", START))


def test_cache_emits_telemetry_for_fetch_hit_and_failure() -> None:
    events: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(events.append)
    try:
        cache, client, _, clock = _cache()
        _get(cache)
        _get(cache)
        clock.now = START + TTL
        client.error = RateLimitError("slow down", platform="codeforces")
        with pytest.raises(RateLimitError):
            _get(cache)
    finally:
        clear_listeners()

    names = [event.name for event in events]
    assert names == ["platform_fetch_completed", "platform_cache_hit", "platform_fetch_failed"]
    payload: Dict[str, object] = events[2].payload
    assert payload["error"] == "rate_limited"
    assert payload["platform"] == "codeforces"


class _SlowStore(InMemoryMetricsStore):
    def get(self, user_id: str, platform: Platform) -> Optional[PlatformMetrics]:
        time.sleep(0.3)
        return super().get(user_id, platform)

    def upsert(self, user_id: str, platform: Platform, record: PlatformMetrics) -> bool:
        time.sleep(0.3)
        return super().upsert(user_id, platform, record)


def test_slow_store_does_not_block_event_loop() -> None:
    clock = _Clock(START)
    client = _FakeClient(clock)
    cache = MetricsCache(_SlowStore(clock=clock), {Platform.CODEFORCES: client}, {Platform.CODEFORCES: TTL}, clock=clock)
    ticks = 0
    done = False

    async def ticker() -> None:
        nonlocal ticks
        while not done:
            ticks += 1
            await asyncio.sleep(0.01)

    async def fetch():
        nonlocal done
        try:
            return await cache.get_or_fetch("user-1", Platform.CODEFORCES, "tourist")
        finally:
            done = True

    async def run():
        return await asyncio.gather(fetch(), ticker())

    result, _ = asyncio.run(run())

    assert result.cached is False
    assert ticks > 10
