"""Process-local metrics store used by tests and single-process deployments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

from ..models import Platform, PlatformMetrics
from ..normalization import utc_now
from .freshness import supersedes


def _normalize_user_id(user_id: str) -> str:
    normalized = str(user_id).strip()
    if not normalized:
        raise ValueError("User id cannot be empty when caching metrics.")
    return normalized


@dataclass
class _MetricsEntry:
    record: PlatformMetrics
    stored_at: datetime


class InMemoryMetricsStore:
    """Keeps the current :class:`PlatformMetrics` per (user, platform)."""

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._entries: Dict[Tuple[str, Platform], _MetricsEntry] = {}
        self._lock = RLock()
        self._clock = clock
        self.writes = 0

    def get(self, user_id: str, platform: Platform) -> Optional[PlatformMetrics]:
        key = (_normalize_user_id(user_id), platform)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return entry.record.model_copy(deep=True)

    def upsert(self, user_id: str, platform: Platform, record: PlatformMetrics) -> bool:
        if record.platform != platform:
            raise ValueError(f"Record for {record.platform.value} cannot be stored under {platform.value}.")
        key = (_normalize_user_id(user_id), platform)
        with self._lock:
            current = self._entries.get(key)
            now = self._clock()
            if not supersedes(current.record.fetched_at if current else None, record.fetched_at, now):
                return False
            self._entries[key] = _MetricsEntry(record=record.model_copy(deep=True), stored_at=now)
            self.writes += 1
        return True


__all__ = ["InMemoryMetricsStore"]
