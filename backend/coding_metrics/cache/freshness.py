"""Freshness cache in front of the platform clients.

A stored record is served while it is younger than the platform TTL; otherwise
the matching client is invoked and its result replaces the stored record.
Store calls are synchronous and run in the threadpool, off the event loop.
Concurrent refreshes of the same (user, platform) may both hit upstream; the
store keeps whichever record was fetched last.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from time import perf_counter
from typing import Callable, Mapping, Optional, Protocol

from fastapi.concurrency import run_in_threadpool

from ..config import Settings
from ..errors import PlatformError
from ..models import MetricsResult, Platform, PlatformMetrics
from ..normalization import utc_now
from ..platforms import PlatformClient
from ..telemetry import emit_event

logger = logging.getLogger(__name__)

# Field whose absence makes a record not worth serving from cache.
PRIMARY_FIELDS: Mapping[Platform, str] = {
    Platform.GITHUB: "publicRepos",
    Platform.LEETCODE: "totalSolved",
    Platform.CODEFORCES: "problemsSolved",
    Platform.CODECHEF: "rating",
}


class MetricsStore(Protocol):
    def get(self, user_id: str, platform: Platform) -> Optional[PlatformMetrics]:  # pragma: no cover
        ...

    def upsert(self, user_id: str, platform: Platform, record: PlatformMetrics) -> bool:  # pragma: no cover
        ...


def default_ttls(settings: Settings) -> dict[Platform, timedelta]:
    return {
        Platform.GITHUB: timedelta(seconds=settings.ttl_github_seconds),
        Platform.LEETCODE: timedelta(seconds=settings.ttl_leetcode_seconds),
        Platform.CODEFORCES: timedelta(seconds=settings.ttl_codeforces_seconds),
        Platform.CODECHEF: timedelta(seconds=settings.ttl_codechef_seconds),
    }


def primary_value_missing(record: PlatformMetrics) -> bool:
    field = PRIMARY_FIELDS.get(record.platform)
    if field == "rating":
        return record.rating_or_score is None
    return record.counters.get(field) is None


def is_cache_eligible(record: PlatformMetrics) -> bool:
    """Partial records missing their primary value are refetched rather than served."""
    return not (record.partial and primary_value_missing(record))


def supersedes(stored_fetched_at: Optional[datetime], incoming_fetched_at: datetime, now: datetime) -> bool:
    """Whether a store may replace its record with one fetched at ``incoming_fetched_at``.

    Writes only move ``fetched_at`` forward, except that a stored record stamped
    after ``now`` (clock skew) is always replaceable.
    """
    if stored_fetched_at is None:
        return True
    return stored_fetched_at < incoming_fetched_at or stored_fetched_at > now


class MetricsCache:
    def __init__(
        self,
        store: MetricsStore,
        clients: Mapping[Platform, PlatformClient],
        ttls: Mapping[Platform, timedelta],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clients = clients
        self._ttls = ttls
        self._clock = clock

    def ttl_for(self, platform: Platform) -> timedelta:
        return self._ttls[platform]

    async def get_or_fetch(
        self,
        user_id: str,
        platform: Platform,
        handle: str,
        *,
        force_refresh: bool = False,
    ) -> MetricsResult:
        stored = None if force_refresh else await run_in_threadpool(self._store.get, user_id, platform)
        if stored is not None:
            age = self._clock() - stored.fetched_at
            if self._reusable(stored, handle, age):
                emit_event(
                    "platform_cache_hit",
                    user_id=user_id,
                    platform=platform,
                    age_seconds=round(age.total_seconds(), 3),
                )
                return MetricsResult(metrics=stored, cached=True, cache_age_seconds=age.total_seconds())

        client = self._clients.get(platform)
        if client is None:
            raise KeyError(f"No client registered for platform {platform.value}")

        started = perf_counter()
        try:
            metrics = await client.fetch_profile(handle)
        except PlatformError as exc:
            emit_event(
                "platform_fetch_failed",
                user_id=user_id,
                platform=platform,
                error=exc.kind,
                latency_ms=int((perf_counter() - started) * 1000),
            )
            raise

        await run_in_threadpool(self._store.upsert, user_id, platform, metrics)
        emit_event(
            "platform_fetch_completed",
            user_id=user_id,
            platform=platform,
            partial=metrics.partial,
            latency_ms=int((perf_counter() - started) * 1000),
        )
        return MetricsResult(metrics=metrics, cached=False, cache_age_seconds=0.0)

    def _reusable(self, stored: PlatformMetrics, handle: str, age: timedelta) -> bool:
        if stored.handle.strip().lower() != handle.strip().lower():
            logger.debug("Handle changed for %s record; refetching", stored.platform.value)
            return False
        if not is_cache_eligible(stored):
            return False
        # A record stamped in the future (clock skew) is never trusted.
        return timedelta(0) <= age < self.ttl_for(stored.platform)


__all__ = [
    "MetricsCache",
    "MetricsStore",
    "PRIMARY_FIELDS",
    "default_ttls",
    "is_cache_eligible",
    "primary_value_missing",
    "supersedes",
]
