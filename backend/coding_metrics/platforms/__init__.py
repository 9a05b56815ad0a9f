"""Per-platform metric clients and the dispatch table that selects them."""

from __future__ import annotations

from typing import Dict, Protocol

import httpx

from ..config import Settings
from ..http_fetch import RetryPolicy
from ..models import Platform, PlatformMetrics
from .codechef import CodeChefClient
from .codeforces import FLAKY_STATUSES, CodeforcesClient
from .github import ContributionWeights, GitHubClient
from .leetcode import LeetCodeClient


class PlatformClient(Protocol):
    """Capability shared by every platform client."""

    async def fetch_profile(self, handle: str) -> PlatformMetrics:  # pragma: no cover - protocol definition
        ...


def contribution_weights(settings: Settings) -> ContributionWeights:
    return ContributionWeights(
        commits=settings.contribution_weight_commits,
        pull_requests=settings.contribution_weight_pull_requests,
        issues=settings.contribution_weight_issues,
        reviews=settings.contribution_weight_reviews,
    )


def build_platform_clients(http: httpx.AsyncClient, settings: Settings) -> Dict[Platform, PlatformClient]:
    retries = settings.http_max_retries
    delay = settings.http_retry_delay_seconds
    return {
        Platform.GITHUB: GitHubClient(
            http,
            token=settings.github_token,
            endpoint=settings.github_graphql_url,
            timeout=settings.github_timeout_seconds,
            policy=RetryPolicy(max_retries=retries, delay_seconds=delay),
            weights=contribution_weights(settings),
        ),
        Platform.LEETCODE: LeetCodeClient(
            http,
            endpoint=settings.leetcode_graphql_url,
            timeout=settings.leetcode_timeout_seconds,
            policy=RetryPolicy(max_retries=retries, delay_seconds=delay),
        ),
        Platform.CODEFORCES: CodeforcesClient(
            http,
            base_url=settings.codeforces_api_url,
            timeout=settings.codeforces_timeout_seconds,
            policy=RetryPolicy(
                max_retries=retries,
                delay_seconds=delay,
                jitter_seconds=1.0,
                retry_statuses=FLAKY_STATUSES,
            ),
        ),
        Platform.CODECHEF: CodeChefClient(
            http,
            base_url=settings.codechef_base_url,
            timeout=settings.codechef_timeout_seconds,
            policy=RetryPolicy(max_retries=retries, delay_seconds=settings.codechef_retry_delay_seconds),
        ),
    }


__all__ = [
    "CodeChefClient",
    "CodeforcesClient",
    "GitHubClient",
    "LeetCodeClient",
    "PlatformClient",
    "build_platform_clients",
    "contribution_weights",
]
