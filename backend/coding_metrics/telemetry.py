"""Structured events for fetch and cache instrumentation.

Every event is logged as ``TELEMETRY {json}`` on the ``codemetrics.telemetry``
logger and handed to the registered listeners. :class:`FetchOutcomeCounter` is
the listener the app installs to report per-platform outcomes on ``/healthz``.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping

logger = logging.getLogger("codemetrics.telemetry")

# Event name -> outcome bucket tracked by FetchOutcomeCounter.
OUTCOME_EVENTS: Mapping[str, str] = {
    "platform_fetch_completed": "fetched",
    "platform_fetch_failed": "failed",
    "platform_cache_hit": "cache_hit",
    "http_retry_scheduled": "retried",
}


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> None:
    with _lock:
        _listeners.append(listener)


def unregister_listener(listener: Listener) -> None:
    with _lock:
        if listener in _listeners:
            _listeners.remove(listener)


def clear_listeners() -> None:
    """Remove all registered listeners. Mainly used to reset test state."""
    with _lock:
        _listeners.clear()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    event = TelemetryEvent(name=name, payload={key: _plain(value) for key, value in fields.items()})

    with _lock:
        listeners = list(_listeners)
    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    logger.info("TELEMETRY %s", json.dumps({"event": name, **event.payload}, default=str))
    return event


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    return value


class FetchOutcomeCounter:
    """Counts fetch outcomes per platform since process start (or last reset)."""

    def __init__(self) -> None:
        self._counts: Counter[tuple[str, str]] = Counter()
        self._lock = RLock()

    def __call__(self, event: TelemetryEvent) -> None:
        outcome = OUTCOME_EVENTS.get(event.name)
        platform = event.payload.get("platform")
        if outcome is None or not platform:
            return
        with self._lock:
            self._counts[(str(platform), outcome)] += 1

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            items = list(self._counts.items())
        summary: Dict[str, Dict[str, int]] = {}
        for (platform, outcome), count in sorted(items):
            summary.setdefault(platform, {})[outcome] = count
        return summary

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()


__all__ = [
    "FetchOutcomeCounter",
    "OUTCOME_EVENTS",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
