"""Inbound entry points used by the route layer."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Mapping, Optional, Union

import httpx

from .cache import InMemoryMetricsStore, MetricsCache, MetricsStore, default_ttls
from .config import Settings, get_settings
from .errors import ConfigurationError, PlatformError
from .models import MetricsResult, Platform
from .platforms import build_platform_clients
from .platforms.github import GitHubClient, GitHubContributions
from .repositories import DatabaseMetricsStore

logger = logging.getLogger(__name__)


class MetricsService:
    def __init__(self, cache: MetricsCache, github: Optional[GitHubClient] = None) -> None:
        self._cache = cache
        self._github = github

    async def fetch_platform_profile(
        self,
        user_id: str,
        platform: Platform,
        handle: str,
        *,
        refresh: bool = False,
    ) -> MetricsResult:
        return await self._cache.get_or_fetch(user_id, platform, handle, force_refresh=refresh)

    async def fetch_github_contributions(self, username: str) -> GitHubContributions:
        if self._github is None:
            raise ConfigurationError("GitHub client is not configured.", platform=Platform.GITHUB.value)
        return await self._github.fetch_contributions(username)

    async def refresh_all(
        self,
        user_id: str,
        handles: Mapping[Platform, str],
        *,
        refresh: bool = False,
    ) -> Dict[Platform, Union[MetricsResult, PlatformError]]:
        """Fetch every requested platform concurrently.

        Platform errors are returned per platform instead of failing the batch;
        anything else propagates.
        """
        platforms = list(handles)
        outcomes = await asyncio.gather(
            *(self.fetch_platform_profile(user_id, platform, handles[platform], refresh=refresh) for platform in platforms),
            return_exceptions=True,
        )
        results: Dict[Platform, Union[MetricsResult, PlatformError]] = {}
        for platform, outcome in zip(platforms, outcomes):
            if isinstance(outcome, PlatformError):
                results[platform] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[platform] = outcome
        return results


def select_metrics_store(settings: Optional[Settings] = None) -> MetricsStore:
    """Database store when ``CODEMETRICS_DATABASE_URL`` is set, process memory otherwise."""
    settings = settings or get_settings()
    if settings.database_url:
        return DatabaseMetricsStore()
    logger.warning("CODEMETRICS_DATABASE_URL is not set; metrics are cached in process memory only")
    return InMemoryMetricsStore()


def build_metrics_service(
    http: httpx.AsyncClient,
    store: MetricsStore,
    settings: Optional[Settings] = None,
) -> MetricsService:
    settings = settings or get_settings()
    clients = build_platform_clients(http, settings)
    cache = MetricsCache(store, clients, default_ttls(settings))
    github = clients[Platform.GITHUB]
    return MetricsService(cache, github if isinstance(github, GitHubClient) else None)


@asynccontextmanager
async def metrics_service_scope(
    store: MetricsStore,
    settings: Optional[Settings] = None,
) -> AsyncIterator[MetricsService]:
    """Yield a service whose HTTP connections are released on exit."""
    async with httpx.AsyncClient(follow_redirects=False) as http:
        yield build_metrics_service(http, store, settings)


__all__ = ["MetricsService", "build_metrics_service", "metrics_service_scope", "select_metrics_store"]
