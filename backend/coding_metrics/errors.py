"""Error kinds surfaced by the platform clients and the fetch wrapper."""

from __future__ import annotations

from typing import Optional


class PlatformError(Exception):
    """Base class for failures fetching metrics from a coding platform.

    ``message`` is safe to show to end users; upstream payloads stay in the
    exception chain and the logs.
    """

    kind = "upstream_error"

    def __init__(self, message: str, *, platform: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform


class NotFoundError(PlatformError):
    kind = "not_found"


class RateLimitError(PlatformError):
    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        *,
        platform: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(message, platform=platform)
        self.retry_after_seconds = retry_after_seconds


class ConfigurationError(PlatformError):
    kind = "configuration_error"


class UpstreamError(PlatformError):
    kind = "upstream_error"


class FetchTimeoutError(PlatformError, TimeoutError):
    kind = "timeout"


class NetworkError(PlatformError):
    kind = "network_error"


__all__ = [
    "ConfigurationError",
    "FetchTimeoutError",
    "NetworkError",
    "NotFoundError",
    "PlatformError",
    "RateLimitError",
    "UpstreamError",
]
