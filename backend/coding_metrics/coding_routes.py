"""Coding-platform metrics endpoints."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, Request, status
from pydantic import BaseModel, Field

from .errors import NotFoundError, PlatformError, RateLimitError
from .models import MetricsResult, Platform
from .service import MetricsService

router = APIRouter(prefix="/api/coding", tags=["coding"])
logger = logging.getLogger(__name__)

HANDLE_PATTERN = r"^[A-Za-z0-9_.-]{1,40}$"


class RefreshRequest(BaseModel):
    handles: Dict[Platform, str] = Field(..., min_length=1)
    refresh: bool = False


def get_metrics_service(request: Request) -> MetricsService:
    return request.app.state.metrics_service


def _require_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header.")
    return x_user_id.strip()


def _status_for(exc: PlatformError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, RateLimitError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_detail(exc: PlatformError) -> Dict[str, Any]:
    if isinstance(exc, (NotFoundError, RateLimitError)):
        message = exc.message
    else:
        message = "Failed to fetch coding platform metrics. Please try again later."
    return {"error": exc.kind, "platform": exc.platform, "message": message}


def _http_error(exc: PlatformError) -> HTTPException:
    logger.warning("Coding metrics request failed (%s): %s", exc.kind, exc.message)
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after_seconds:
        headers = {"Retry-After": str(int(exc.retry_after_seconds))}
    return HTTPException(status_code=_status_for(exc), detail=_error_detail(exc), headers=headers)


def _result_payload(result: MetricsResult) -> Dict[str, Any]:
    return {
        "metrics": result.metrics.model_dump(mode="json", by_alias=True),
        "cached": result.cached,
        "cache_age_seconds": round(result.cache_age_seconds, 3),
    }


@router.get("/github/{username}/contributions")
async def github_contributions(
    username: str = Path(..., pattern=HANDLE_PATTERN),
    service: MetricsService = Depends(get_metrics_service),
) -> Dict[str, Any]:
    try:
        contributions = await service.fetch_github_contributions(username)
    except PlatformError as exc:
        raise _http_error(exc) from exc
    return {
        "username": contributions.username,
        "commits": contributions.commits,
        "pull_requests": contributions.pull_requests,
        "issues": contributions.issues,
        "reviews": contributions.reviews,
        "total_contributions": contributions.total_contributions,
        "contribution_score": contributions.contribution_score,
        "fetched_at": contributions.fetched_at.isoformat(),
    }


@router.get("/{platform}/{handle}")
async def platform_profile(
    platform: Platform,
    handle: str = Path(..., pattern=HANDLE_PATTERN),
    refresh: bool = Query(default=False),
    user_id: str = Depends(_require_user),
    service: MetricsService = Depends(get_metrics_service),
) -> Dict[str, Any]:
    try:
        result = await service.fetch_platform_profile(user_id, platform, handle, refresh=refresh)
    except PlatformError as exc:
        raise _http_error(exc) from exc
    return _result_payload(result)


@router.post("/refresh")
async def refresh_profiles(
    payload: RefreshRequest,
    user_id: str = Depends(_require_user),
    service: MetricsService = Depends(get_metrics_service),
) -> Dict[str, Any]:
    for platform, handle in payload.handles.items():
        if not re.fullmatch(HANDLE_PATTERN, handle):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid handle for {platform.value}.",
            )
    outcomes = await service.refresh_all(user_id, payload.handles, refresh=payload.refresh)
    body: Dict[str, Any] = {}
    for platform, outcome in outcomes.items():
        if isinstance(outcome, PlatformError):
            body[platform.value] = {"status": _status_for(outcome), **_error_detail(outcome)}
        else:
            body[platform.value] = {"status": status.HTTP_200_OK, **_result_payload(outcome)}
    return {"platforms": body}


__all__ = ["HANDLE_PATTERN", "get_metrics_service", "router"]
