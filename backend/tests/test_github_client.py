from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from coding_metrics.errors import ConfigurationError, NotFoundError, RateLimitError, UpstreamError
from coding_metrics.http_fetch import RetryPolicy
from coding_metrics.models import Platform
from coding_metrics.platforms.github import (
    ContributionWeights,
    GitHubClient,
    aggregate_repositories,
    featured_repositories,
    parse_repositories,
    top_languages,
)

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _repo(name: str, stars: int, language: Optional[str], *, commits: int = 1, forks: int = 0) -> Dict[str, Any]:
    return {
        "name": name,
        "description": f"{name} description",
        "url": f"https://github.com/octo/{name}",
        "updatedAt": "2026-02-01T00:00:00Z",
        "stargazerCount": stars,
        "forkCount": forks,
        "primaryLanguage": {"name": language} if language else None,
        "defaultBranchRef": {"target": {"history": {"totalCount": commits}}},
    }


def _user_payload(repos: List[Dict[str, Any]], *, total: Optional[int] = None) -> Dict[str, Any]:
    return {
        "data": {
            "user": {
                "login": "octo",
                "name": "Octo Cat",
                "bio": "Builds things",
                "avatarUrl": "https://avatars.test/octo.png",
                "url": "https://github.com/octo",
                "createdAt": "2015-05-05T00:00:00Z",
                "followers": {"totalCount": 42},
                "following": {"totalCount": 7},
                "repositories": {"totalCount": len(repos) if total is None else total, "nodes": repos},
                "contributionsCollection": {
                    "totalCommitContributions": 10,
                    "totalPullRequestContributions": 2,
                    "totalIssueContributions": 1,
                    "totalPullRequestReviewContributions": 3,
                    "contributionCalendar": {"totalContributions": 16},
                },
            }
        }
    }


def _client(handler, *, token: Optional[str] = "ghp_test", **kwargs: Any) -> tuple[GitHubClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = GitHubClient(
        http,
        token=token,
        policy=RetryPolicy(max_retries=0),
        clock=lambda: FIXED_NOW,
        **kwargs,
    )
    return client, http


def _fetch(handler, method: str = "fetch_profile", **kwargs: Any):
    async def _go():
        client, http = _client(handler, **kwargs)
        async with http:
            return await getattr(client, method)("octo")

    return asyncio.run(_go())


def test_fetch_profile_aggregates_repositories() -> None:
    seen: List[httpx.Request] = []
    repos = [
        _repo("alpha", 10, "Go", commits=30, forks=2),
        _repo("beta", 5, "Go", commits=12, forks=1),
        _repo("gamma", 20, "Rust", commits=8, forks=4),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_user_payload(repos))

    metrics = _fetch(handler)

    assert metrics.platform is Platform.GITHUB
    assert metrics.counters["totalStars"] == 35
    assert metrics.counters["totalForks"] == 7
    assert metrics.counters["totalCommits"] == 50
    assert metrics.counters["publicRepos"] == 3
    assert metrics.counters["followers"] == 42
    assert metrics.details["topLanguages"] == [
        {"language": "Go", "count": 2},
        {"language": "Rust", "count": 1},
    ]
    assert [repo["name"] for repo in metrics.details["featuredRepos"]] == ["gamma", "alpha", "beta"]
    assert metrics.partial is False
    assert metrics.source_note is None
    assert metrics.fetched_at == FIXED_NOW
    assert metrics.profile_url == "https://github.com/octo"

    request = seen[0]
    assert request.headers["Authorization"] == "Bearer ghp_test"
    body = json.loads(request.content)
    assert body["variables"] == {"login": "octo"}
    assert "repositories(" in body["query"]


def test_top_languages_break_ties_by_first_seen_order() -> None:
    repositories = parse_repositories(
        [
            _repo("one", 1, "Rust"),
            _repo("two", 1, "Go"),
            _repo("three", 1, "Go"),
            _repo("four", 1, "Rust"),
            _repo("five", 1, "Python"),
            _repo("six", 1, None),
        ]
    )

    ranked = top_languages(repositories)

    assert [entry["language"] for entry in ranked] == ["Rust", "Go", "Python"]


def test_top_languages_keeps_at_most_five() -> None:
    languages = ["A", "B", "C", "D", "E", "F", "A"]
    repositories = parse_repositories([_repo(f"r{index}", 0, lang) for index, lang in enumerate(languages)])

    ranked = top_languages(repositories)

    assert len(ranked) == 5
    assert ranked[0] == {"language": "A", "count": 2}


def test_featured_repositories_keep_recency_order_on_star_ties() -> None:
    repositories = parse_repositories(
        [_repo("newest", 3, "Go"), _repo("middle", 9, "Go"), _repo("oldest", 3, "Go")]
        + [_repo(f"extra{index}", 1, None) for index in range(4)]
    )

    featured = featured_repositories(repositories)

    assert [repo["name"] for repo in featured] == ["middle", "newest", "oldest", "extra0", "extra1"]


def test_aggregates_treat_missing_counts_as_zero() -> None:
    node = _repo("bare", 0, None)
    node["stargazerCount"] = None
    node["defaultBranchRef"] = None

    aggregates = aggregate_repositories(parse_repositories([node]))

    assert aggregates.total_stars == 0
    assert aggregates.total_commits == 0
    assert aggregates.top_languages == []


def test_repository_cap_is_noted() -> None:
    repos = [_repo("alpha", 1, "Go")]

    metrics = _fetch(lambda request: httpx.Response(200, json=_user_payload(repos, total=250)))

    assert metrics.counters["publicRepos"] == 250
    assert metrics.partial is False
    assert metrics.source_note is not None
    assert "250" in metrics.source_note


def test_missing_token_raises_configuration_error_without_calling_upstream() -> None:
    calls: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(200, json={})

    with pytest.raises(ConfigurationError):
        _fetch(handler, token=None)
    assert calls == []


def test_unknown_user_raises_not_found() -> None:
    payload = {
        "data": {"user": None},
        "errors": [{"type": "NOT_FOUND", "path": ["user"], "message": "Could not resolve to a User"}],
    }

    with pytest.raises(NotFoundError):
        _fetch(lambda request: httpx.Response(200, json=payload))


def test_graphql_error_payload_raises_upstream_error() -> None:
    payload = {"errors": [{"type": "INTERNAL", "message": "Something went wrong"}]}

    with pytest.raises(UpstreamError):
        _fetch(lambda request: httpx.Response(200, json=payload))


def test_rejected_token_raises_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        _fetch(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))


def test_exhausted_rate_limit_raises_rate_limit_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"})

    with pytest.raises(RateLimitError):
        _fetch(handler)


def test_fetch_contributions_computes_weighted_score() -> None:
    contributions = _fetch(
        lambda request: httpx.Response(200, json=_user_payload([])),
        method="fetch_contributions",
    )

    assert contributions.commits == 10
    assert contributions.pull_requests == 2
    assert contributions.issues == 1
    assert contributions.reviews == 3
    assert contributions.total_contributions == 16
    # 2*10 + 5*2 + 3*1 + 4*3
    assert contributions.contribution_score == 45


def test_contribution_weights_are_configurable() -> None:
    contributions = _fetch(
        lambda request: httpx.Response(200, json=_user_payload([])),
        method="fetch_contributions",
        weights=ContributionWeights(commits=1, pull_requests=0, issues=0, reviews=0),
    )

    assert contributions.contribution_score == 10
