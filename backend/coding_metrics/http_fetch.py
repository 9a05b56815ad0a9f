"""Outbound HTTP helpers with a bounded timeout and a bounded retry loop."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Optional

import httpx

from .errors import FetchTimeoutError, NetworkError
from .telemetry import emit_event

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/121.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 1
    delay_seconds: float = 1.0
    jitter_seconds: float = 0.0
    retry_on_timeout: bool = True
    retry_statuses: FrozenSet[int] = field(default_factory=frozenset)

    def next_delay(self) -> float:
        if self.jitter_seconds <= 0:
            return self.delay_seconds
        return self.delay_seconds + random.uniform(0, self.jitter_seconds)


NO_RETRY = RetryPolicy(max_retries=0)


async def request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    timeout: float,
    platform: Optional[str] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request, failing fast once ``timeout`` seconds have elapsed.

    HTTP error statuses are returned untouched; only transport failures raise.
    Cancelling the awaiting task cancels the in-flight request.
    """
    try:
        return await asyncio.wait_for(
            client.request(method, url, timeout=timeout, **kwargs),
            timeout=timeout,
        )
    except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
        raise FetchTimeoutError(
            f"Request to {_host(url)} timed out after {timeout:g}s", platform=platform
        ) from exc
    except httpx.TransportError as exc:
        raise NetworkError(f"Network error contacting {_host(url)}: {exc.__class__.__name__}", platform=platform) from exc


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    timeout: float,
    policy: RetryPolicy = NO_RETRY,
    platform: Optional[str] = None,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """Run :func:`request` up to ``1 + policy.max_retries`` times."""
    attempt = 0
    while True:
        attempt += 1
        try:
            response = await request(client, method, url, timeout=timeout, platform=platform, **kwargs)
        except FetchTimeoutError:
            if not policy.retry_on_timeout or attempt > policy.max_retries:
                raise
            reason = "timeout"
        except NetworkError:
            if attempt > policy.max_retries:
                raise
            reason = "network_error"
        else:
            if response.status_code not in policy.retry_statuses or attempt > policy.max_retries:
                return response
            reason = f"status_{response.status_code}"

        delay = policy.next_delay()
        logger.info(
            "Retrying %s %s after %s (attempt %s of %s, delay %.1fs)",
            method,
            _host(url),
            reason,
            attempt,
            policy.max_retries + 1,
            delay,
        )
        emit_event("http_retry_scheduled", platform=platform, reason=reason, attempt=attempt, delay_seconds=delay)
        await sleep(delay)


def _host(url: str) -> str:
    try:
        return httpx.URL(url).host or url
    except (httpx.InvalidURL, TypeError):
        return url


__all__ = [
    "BROWSER_HEADERS",
    "BROWSER_USER_AGENT",
    "NO_RETRY",
    "RetryPolicy",
    "request",
    "request_with_retry",
]
