"""Normalized metrics records shared by every platform client."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Platform(str, Enum):
    GITHUB = "github"
    LEETCODE = "leetcode"
    CODEFORCES = "codeforces"
    CODECHEF = "codechef"


class PlatformMetrics(BaseModel):
    """Current metrics for one (user, platform) pair.

    ``counters`` values are non-negative integers, or ``None`` when the value
    could not be determined. ``details`` carries platform-specific structured
    extras (top languages, rating history, badges, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    platform: Platform
    handle: str
    profile_url: str
    rating_or_score: Optional[Union[int, float]] = None
    counters: Dict[str, Optional[int]] = Field(default_factory=dict)
    details: Dict[str, Any] = Field(default_factory=dict)
    fetched_at: datetime
    partial: bool = False
    source_note: Optional[str] = None

    @field_validator("fetched_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("counters")
    @classmethod
    def _reject_negative_counters(cls, value: Dict[str, Optional[int]]) -> Dict[str, Optional[int]]:
        for name, count in value.items():
            if count is not None and count < 0:
                raise ValueError(f"Counter '{name}' cannot be negative (got {count}).")
        return value

    @model_validator(mode="after")
    def _partial_requires_explanation(self) -> "PlatformMetrics":
        if self.partial and self.source_note is None and None not in self.counters.values():
            raise ValueError("Partial metrics need a missing counter or a source note.")
        return self


class MetricsResult(BaseModel):
    """What the inbound call hands back to the route layer."""

    metrics: PlatformMetrics
    cached: bool
    cache_age_seconds: float = 0.0


__all__ = ["MetricsResult", "Platform", "PlatformMetrics"]
