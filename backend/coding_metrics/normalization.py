"""Helpers mapping platform payloads onto :class:`PlatformMetrics`."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from .models import Platform, PlatformMetrics

MAX_PROBLEM_COUNT = 100_000
MAX_SUBMISSION_COUNT = 10_000_000
MAX_GENERIC_COUNT = 100_000_000
MAX_RATING = 5_000

PARTIAL_DEFAULT_NOTE = "Some fields could not be determined."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sane_count(value: Any, *, upper: int = MAX_GENERIC_COUNT) -> Optional[int]:
    """Return ``value`` as an int, or ``None`` when it is missing or implausible."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if number < 0 or number > upper:
        return None
    return number


def sane_rating(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = round(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    if number < 0 or number > MAX_RATING:
        return None
    return number


def join_notes(notes: Iterable[Optional[str]]) -> Optional[str]:
    cleaned = [note.strip() for note in notes if note and note.strip()]
    if not cleaned:
        return None
    return " ".join(cleaned)


def build_metrics(
    platform: Platform,
    handle: str,
    profile_url: str,
    *,
    fetched_at: datetime,
    rating_or_score: Optional[Union[int, float]] = None,
    counters: Optional[Mapping[str, Optional[int]]] = None,
    details: Optional[Dict[str, Any]] = None,
    notes: Iterable[Optional[str]] = (),
    partial: bool = False,
) -> PlatformMetrics:
    """Single constructor for normalized records.

    A missing counter always marks the record partial; a partial record without
    any other explanation gets a generic note.
    """
    counter_map = dict(counters or {})
    source_note = join_notes(notes)
    is_partial = partial or any(value is None for value in counter_map.values())
    if is_partial and source_note is None:
        source_note = PARTIAL_DEFAULT_NOTE
    return PlatformMetrics(
        platform=platform,
        handle=handle,
        profile_url=profile_url,
        rating_or_score=rating_or_score,
        counters=counter_map,
        details=dict(details or {}),
        fetched_at=fetched_at,
        partial=is_partial,
        source_note=source_note,
    )


__all__ = [
    "MAX_GENERIC_COUNT",
    "MAX_PROBLEM_COUNT",
    "MAX_RATING",
    "MAX_SUBMISSION_COUNT",
    "build_metrics",
    "join_notes",
    "sane_count",
    "sane_rating",
    "utc_now",
]
