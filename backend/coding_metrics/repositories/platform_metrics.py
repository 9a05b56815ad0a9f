"""Database-backed store for the current metrics record per (user, platform)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, ContextManager, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..cache.freshness import supersedes
from ..db.models import PlatformMetricsModel
from ..db.session import session_scope
from ..models import Platform, PlatformMetrics
from ..normalization import utc_now
from ..telemetry import emit_event

logger = logging.getLogger(__name__)


def _normalize_user_id(user_id: str) -> str:
    normalized = str(user_id).strip()
    if not normalized:
        raise ValueError("User id cannot be empty.")
    return normalized


class PlatformMetricsRepository:
    """Reads and replaces ``platform_metrics`` rows."""

    def get(self, session: Session, user_id: str, platform: Platform) -> PlatformMetrics | None:
        model = self._get_model(session, user_id, platform)
        if model is None:
            return None
        return self._to_domain(model)

    def upsert(
        self,
        session: Session,
        user_id: str,
        metrics: PlatformMetrics,
        *,
        now: Optional[datetime] = None,
    ) -> bool:
        """Replace the stored record; returns ``False`` when a newer one is already stored."""
        normalized = _normalize_user_id(user_id)
        model = self._get_model(session, normalized, metrics.platform)
        stored_at = _aware(model.fetched_at) if model is not None else None
        if not supersedes(stored_at, metrics.fetched_at, now or utc_now()):
            logger.info(
                "Skipping metrics write for user=%s platform=%s: stored record is newer",
                normalized,
                metrics.platform.value,
            )
            emit_event("metrics_write_skipped", user_id=normalized, platform=metrics.platform)
            return False
        if model is None:
            model = PlatformMetricsModel(user_id=normalized, platform=metrics.platform.value)
            session.add(model)

        model.handle = metrics.handle
        model.payload = metrics.model_dump(mode="json", by_alias=True)
        model.partial = metrics.partial
        model.fetched_at = metrics.fetched_at
        session.flush()
        return True

    def delete(self, session: Session, user_id: str, platform: Platform) -> bool:
        stmt = delete(PlatformMetricsModel).where(
            PlatformMetricsModel.user_id == _normalize_user_id(user_id),
            PlatformMetricsModel.platform == platform.value,
        )
        result = session.execute(stmt)
        return bool(result.rowcount)

    def _get_model(self, session: Session, user_id: str, platform: Platform) -> PlatformMetricsModel | None:
        stmt = select(PlatformMetricsModel).where(
            PlatformMetricsModel.user_id == _normalize_user_id(user_id),
            PlatformMetricsModel.platform == platform.value,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _to_domain(self, model: PlatformMetricsModel) -> PlatformMetrics | None:
        try:
            return PlatformMetrics.model_validate(model.payload)
        except ValidationError:
            logger.exception(
                "Discarding unreadable metrics record for user=%s platform=%s", model.user_id, model.platform
            )
            return None


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DatabaseMetricsStore:
    """``get``/``upsert`` store interface over :class:`PlatformMetricsRepository`."""

    def __init__(
        self,
        repository: Optional[PlatformMetricsRepository] = None,
        scope: Callable[[], ContextManager[Session]] = session_scope,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository or platform_metrics
        self._scope = scope
        self._clock = clock

    def get(self, user_id: str, platform: Platform) -> PlatformMetrics | None:
        with self._scope() as session:
            return self._repository.get(session, user_id, platform)

    def upsert(self, user_id: str, platform: Platform, record: PlatformMetrics) -> bool:
        if record.platform != platform:
            raise ValueError(f"Record for {record.platform.value} cannot be stored under {platform.value}.")
        with self._scope() as session:
            return self._repository.upsert(session, user_id, record, now=self._clock())


platform_metrics = PlatformMetricsRepository()

__all__ = ["DatabaseMetricsStore", "PlatformMetricsRepository", "platform_metrics"]
