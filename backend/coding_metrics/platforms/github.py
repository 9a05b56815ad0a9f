"""GitHub profile metrics via a single aggregated GraphQL query."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..errors import ConfigurationError, NotFoundError, RateLimitError, UpstreamError
from ..http_fetch import RetryPolicy, request_with_retry
from ..models import Platform, PlatformMetrics
from ..normalization import build_metrics, sane_count, utc_now

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
REPOSITORY_PAGE_SIZE = 100
TOP_LANGUAGE_LIMIT = 5
FEATURED_REPO_LIMIT = 5

PROFILE_QUERY = """
query($login: String!) {
  user(login: $login) {
    login
    name
    bio
    avatarUrl
    url
    createdAt
    followers { totalCount }
    following { totalCount }
    repositories(
      first: %d
      ownerAffiliations: OWNER
      orderBy: { field: UPDATED_AT, direction: DESC }
    ) {
      totalCount
      nodes {
        name
        description
        url
        updatedAt
        stargazerCount
        forkCount
        primaryLanguage { name }
        defaultBranchRef {
          target {
            ... on Commit { history { totalCount } }
          }
        }
      }
    }
    contributionsCollection {
      totalCommitContributions
      totalPullRequestContributions
      totalIssueContributions
      totalPullRequestReviewContributions
      contributionCalendar { totalContributions }
    }
  }
}
""" % REPOSITORY_PAGE_SIZE

CONTRIBUTIONS_QUERY = """
query($login: String!) {
  user(login: $login) {
    login
    contributionsCollection {
      totalCommitContributions
      totalPullRequestContributions
      totalIssueContributions
      totalPullRequestReviewContributions
      contributionCalendar { totalContributions }
    }
  }
}
"""


@dataclass(frozen=True)
class ContributionWeights:
    """Weights for the contribution score.

    These are a product choice, not derived from any external ranking.
    """

    commits: int = 2
    pull_requests: int = 5
    issues: int = 3
    reviews: int = 4


DEFAULT_CONTRIBUTION_WEIGHTS = ContributionWeights()


@dataclass(frozen=True)
class GitHubContributions:
    username: str
    commits: int
    pull_requests: int
    issues: int
    reviews: int
    total_contributions: Optional[int]
    contribution_score: int
    fetched_at: datetime


@dataclass(frozen=True)
class RepositorySummary:
    name: str
    description: Optional[str]
    url: Optional[str]
    stars: int
    forks: int
    language: Optional[str]
    commit_count: int
    updated_at: Optional[str]


@dataclass(frozen=True)
class RepositoryAggregates:
    total_stars: int
    total_forks: int
    total_commits: int
    top_languages: List[Dict[str, Any]]
    featured_repos: List[Dict[str, Any]]


def parse_repositories(nodes: List[Dict[str, Any]]) -> List[RepositorySummary]:
    repositories: List[RepositorySummary] = []
    for node in nodes or []:
        if not isinstance(node, dict):
            continue
        language = (node.get("primaryLanguage") or {}).get("name")
        target = ((node.get("defaultBranchRef") or {}).get("target") or {})
        history = target.get("history") or {}
        repositories.append(
            RepositorySummary(
                name=str(node.get("name") or ""),
                description=node.get("description"),
                url=node.get("url"),
                stars=sane_count(node.get("stargazerCount")) or 0,
                forks=sane_count(node.get("forkCount")) or 0,
                language=language,
                commit_count=sane_count(history.get("totalCount")) or 0,
                updated_at=node.get("updatedAt"),
            )
        )
    return repositories


def top_languages(repositories: List[RepositorySummary], limit: int = TOP_LANGUAGE_LIMIT) -> List[Dict[str, Any]]:
    """Most frequent primary languages; ties keep first-encountered order."""
    counts: Counter[str] = Counter()
    for repo in repositories:
        if repo.language:
            counts[repo.language] += 1
    # Counter preserves insertion order and sorted() is stable.
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [{"language": language, "count": count} for language, count in ranked[:limit]]


def featured_repositories(
    repositories: List[RepositorySummary], limit: int = FEATURED_REPO_LIMIT
) -> List[Dict[str, Any]]:
    """Top repositories by stars; ties keep the most-recently-updated-first order."""
    ranked = sorted(repositories, key=lambda repo: repo.stars, reverse=True)
    return [
        {
            "name": repo.name,
            "description": repo.description,
            "stars": repo.stars,
            "forks": repo.forks,
            "language": repo.language,
            "url": repo.url,
            "updatedAt": repo.updated_at,
        }
        for repo in ranked[:limit]
    ]


def aggregate_repositories(repositories: List[RepositorySummary]) -> RepositoryAggregates:
    return RepositoryAggregates(
        total_stars=sum(repo.stars for repo in repositories),
        total_forks=sum(repo.forks for repo in repositories),
        total_commits=sum(repo.commit_count for repo in repositories),
        top_languages=top_languages(repositories),
        featured_repos=featured_repositories(repositories),
    )


def contribution_score(
    *, commits: int, pull_requests: int, issues: int, reviews: int, weights: ContributionWeights = DEFAULT_CONTRIBUTION_WEIGHTS
) -> int:
    return (
        weights.commits * commits
        + weights.pull_requests * pull_requests
        + weights.issues * issues
        + weights.reviews * reviews
    )


class GitHubClient:
    """Fetches GitHub metrics with a bearer token supplied by the operator."""

    platform = Platform.GITHUB

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        token: Optional[str],
        endpoint: str = GITHUB_GRAPHQL_URL,
        timeout: float = 10.0,
        policy: Optional[RetryPolicy] = None,
        weights: ContributionWeights = DEFAULT_CONTRIBUTION_WEIGHTS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._http = http
        self._token = token
        self._endpoint = endpoint
        self._timeout = timeout
        self._policy = policy or RetryPolicy(max_retries=1, delay_seconds=1.0)
        self._weights = weights
        self._clock = clock

    async def fetch_profile(self, username: str) -> PlatformMetrics:
        data = await self._query(PROFILE_QUERY, username)
        user = data["user"]

        repositories_block = user.get("repositories") or {}
        repositories = parse_repositories(repositories_block.get("nodes") or [])
        aggregates = aggregate_repositories(repositories)
        repository_total = sane_count(repositories_block.get("totalCount"))
        contributions = user.get("contributionsCollection") or {}

        notes = []
        if repository_total is not None and repository_total > len(repositories):
            notes.append(
                f"Stars, forks and commits cover the {len(repositories)} most recently updated "
                f"of {repository_total} repositories."
            )

        counters = {
            "publicRepos": repository_total,
            "followers": sane_count((user.get("followers") or {}).get("totalCount")),
            "following": sane_count((user.get("following") or {}).get("totalCount")),
            "totalStars": sane_count(aggregates.total_stars),
            "totalForks": sane_count(aggregates.total_forks),
            "totalCommits": sane_count(aggregates.total_commits),
            "commitContributions": sane_count(contributions.get("totalCommitContributions")),
            "pullRequestContributions": sane_count(contributions.get("totalPullRequestContributions")),
            "issueContributions": sane_count(contributions.get("totalIssueContributions")),
            "reviewContributions": sane_count(contributions.get("totalPullRequestReviewContributions")),
        }
        login = user.get("login") or username
        return build_metrics(
            Platform.GITHUB,
            username,
            user.get("url") or f"https://github.com/{login}",
            fetched_at=self._clock(),
            counters=counters,
            details={
                "login": login,
                "name": user.get("name"),
                "bio": user.get("bio"),
                "avatarUrl": user.get("avatarUrl"),
                "createdAt": user.get("createdAt"),
                "topLanguages": aggregates.top_languages,
                "featuredRepos": aggregates.featured_repos,
            },
            notes=notes,
        )

    async def fetch_contributions(self, username: str) -> GitHubContributions:
        data = await self._query(CONTRIBUTIONS_QUERY, username)
        collection = data["user"].get("contributionsCollection") or {}
        commits = sane_count(collection.get("totalCommitContributions")) or 0
        pull_requests = sane_count(collection.get("totalPullRequestContributions")) or 0
        issues = sane_count(collection.get("totalIssueContributions")) or 0
        reviews = sane_count(collection.get("totalPullRequestReviewContributions")) or 0
        calendar = collection.get("contributionCalendar") or {}
        return GitHubContributions(
            username=data["user"].get("login") or username,
            commits=commits,
            pull_requests=pull_requests,
            issues=issues,
            reviews=reviews,
            total_contributions=sane_count(calendar.get("totalContributions")),
            contribution_score=contribution_score(
                commits=commits,
                pull_requests=pull_requests,
                issues=issues,
                reviews=reviews,
                weights=self._weights,
            ),
            fetched_at=self._clock(),
        )

    async def _query(self, query: str, username: str) -> Dict[str, Any]:
        if not self._token:
            raise ConfigurationError(
                "GitHub access token is not configured (set GITHUB_TOKEN).", platform=self.platform.value
            )
        response = await request_with_retry(
            self._http,
            "POST",
            self._endpoint,
            timeout=self._timeout,
            policy=self._policy,
            platform=self.platform.value,
            json={"query": query, "variables": {"login": username}},
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/json",
                "User-Agent": "coding-metrics",
            },
        )
        self._raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("GitHub returned a non-JSON response.", platform=self.platform.value) from exc
        if not isinstance(payload, dict):
            raise UpstreamError("GitHub returned an unexpected payload.", platform=self.platform.value)

        errors = payload.get("errors") or []
        data = payload.get("data") or {}
        if any(isinstance(error, dict) and error.get("type") == "NOT_FOUND" for error in errors):
            raise NotFoundError(f"GitHub user not found: {username}", platform=self.platform.value)
        if errors:
            logger.warning("GitHub GraphQL errors for %s: %s", username, errors)
            raise UpstreamError("GitHub GraphQL query failed.", platform=self.platform.value)
        if not isinstance(data, dict) or not data.get("user"):
            raise NotFoundError(f"GitHub user not found: {username}", platform=self.platform.value)
        return data

    def _raise_for_status(self, response: httpx.Response) -> None:
        status_code = response.status_code
        if status_code < 400:
            return
        if status_code == 401:
            raise ConfigurationError("GitHub rejected the configured access token.", platform=self.platform.value)
        if status_code == 429 or (status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"):
            reset = response.headers.get("x-ratelimit-reset")
            logger.warning("GitHub rate limit exhausted (reset=%s)", reset)
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                "GitHub API rate limit exceeded. Please try again later.",
                platform=self.platform.value,
                retry_after_seconds=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        logger.warning("GitHub GraphQL request failed with HTTP %s", status_code)
        raise UpstreamError(f"GitHub API request failed (HTTP {status_code}).", platform=self.platform.value)


__all__ = [
    "CONTRIBUTIONS_QUERY",
    "ContributionWeights",
    "DEFAULT_CONTRIBUTION_WEIGHTS",
    "GitHubClient",
    "GitHubContributions",
    "PROFILE_QUERY",
    "RepositorySummary",
    "aggregate_repositories",
    "contribution_score",
    "featured_repositories",
    "parse_repositories",
    "top_languages",
]
