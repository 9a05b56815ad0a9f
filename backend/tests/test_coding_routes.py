from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from coding_metrics.cache import InMemoryMetricsStore, MetricsCache
from coding_metrics.coding_routes import get_metrics_service
from coding_metrics.config import get_settings
from coding_metrics.errors import NotFoundError, PlatformError, RateLimitError, UpstreamError
from coding_metrics.main import app
from coding_metrics.models import Platform, PlatformMetrics
from coding_metrics.normalization import build_metrics
from coding_metrics.platforms.github import GitHubContributions
from coding_metrics.service import MetricsService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
HEADERS = {"X-User-Id": "user-1"}


class _StubClient:
    def __init__(self, platform: Platform) -> None:
        self.platform = platform
        self.calls: List[str] = []
        self.error: Optional[PlatformError] = None

    async def fetch_profile(self, handle: str) -> PlatformMetrics:
        self.calls.append(handle)
        if self.error is not None:
            raise self.error
        return build_metrics(
            self.platform,
            handle,
            f"https://example.test/{self.platform.value}/{handle}",
            fetched_at=NOW,
            rating_or_score=1500,
            counters={"publicRepos": 3, "totalSolved": 42, "problemsSolved": 7},
        )


class _StubGitHub:
    def __init__(self) -> None:
        self.error: Optional[PlatformError] = None

    async def fetch_contributions(self, username: str) -> GitHubContributions:
        if self.error is not None:
            raise self.error
        return GitHubContributions(
            username=username,
            commits=10,
            pull_requests=2,
            issues=1,
            reviews=3,
            total_contributions=16,
            contribution_score=45,
            fetched_at=NOW,
        )


@pytest.fixture()
def clients() -> Dict[Platform, _StubClient]:
    return {platform: _StubClient(platform) for platform in Platform}


@pytest.fixture()
def github() -> _StubGitHub:
    return _StubGitHub()


@pytest.fixture()
def client(clients: Dict[Platform, _StubClient], github: _StubGitHub):
    store = InMemoryMetricsStore()
    ttls = {platform: timedelta(minutes=5) for platform in Platform}
    cache = MetricsCache(store, clients, ttls, clock=lambda: NOW + timedelta(seconds=30))

    service = MetricsService(cache, github)  # type: ignore[arg-type]
    app.dependency_overrides[get_metrics_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_metrics_service, None)


def test_profile_is_fetched_then_served_from_cache(client: TestClient, clients) -> None:
    first = client.get("/api/coding/leetcode/ada", headers=HEADERS)
    second = client.get("/api/coding/leetcode/ada", headers=HEADERS)

    assert first.status_code == 200
    body = first.json()
    assert body["cached"] is False
    assert body["metrics"]["platform"] == "leetcode"
    assert body["metrics"]["counters"]["totalSolved"] == 42
    assert body["metrics"]["profileUrl"] == "https://example.test/leetcode/ada"
    assert body["metrics"]["fetchedAt"].startswith("2026-03-01T12:00:00")

    assert second.json()["cached"] is True
    assert second.json()["cache_age_seconds"] == 30.0
    assert clients[Platform.LEETCODE].calls == ["ada"]


def test_refresh_query_forces_refetch(client: TestClient, clients) -> None:
    client.get("/api/coding/codeforces/tourist", headers=HEADERS)

    response = client.get("/api/coding/codeforces/tourist", params={"refresh": "true"}, headers=HEADERS)

    assert response.json()["cached"] is False
    assert clients[Platform.CODEFORCES].calls == ["tourist", "tourist"]


def test_missing_user_header_is_rejected(client: TestClient) -> None:
    response = client.get("/api/coding/leetcode/ada")

    assert response.status_code == 401


@pytest.mark.parametrize("path", ["/api/coding/topcoder/ada", "/api/coding/leetcode/" + "a" * 41, "/api/coding/leetcode/bad$name"])
def test_invalid_platform_or_handle_is_rejected(client: TestClient, path: str) -> None:
    response = client.get(path, headers=HEADERS)

    assert response.status_code == 422


def test_not_found_maps_to_404(client: TestClient, clients) -> None:
    clients[Platform.GITHUB].error = NotFoundError("GitHub user not found: ghost", platform="github")

    response = client.get("/api/coding/github/ghost", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"
    assert response.json()["detail"]["message"] == "GitHub user not found: ghost"


def test_rate_limit_maps_to_429_with_retry_after(client: TestClient, clients) -> None:
    clients[Platform.CODEFORCES].error = RateLimitError(
        "Codeforces API rate limit exceeded.", platform="codeforces", retry_after_seconds=30
    )

    response = client.get("/api/coding/codeforces/tourist", headers=HEADERS)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.json()["detail"]["error"] == "rate_limited"


def test_other_failures_map_to_500_with_generic_message(client: TestClient, clients) -> None:
    clients[Platform.LEETCODE].error = UpstreamError("LeetCode GraphQL query failed: secret details", platform="leetcode")

    response = client.get("/api/coding/leetcode/ada", headers=HEADERS)

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert "secret" not in detail["message"]
    assert detail["platform"] == "leetcode"


def test_refresh_endpoint_reports_each_platform(client: TestClient, clients) -> None:
    clients[Platform.CODECHEF].error = NotFoundError("CodeChef user not found.", platform="codechef")

    response = client.post(
        "/api/coding/refresh",
        json={"handles": {"leetcode": "ada", "codechef": "nobody"}},
        headers=HEADERS,
    )

    assert response.status_code == 200
    platforms = response.json()["platforms"]
    assert platforms["leetcode"]["status"] == 200
    assert platforms["leetcode"]["metrics"]["handle"] == "ada"
    assert platforms["codechef"]["status"] == 404
    assert platforms["codechef"]["error"] == "not_found"


def test_refresh_endpoint_validates_handles(client: TestClient) -> None:
    response = client.post(
        "/api/coding/refresh",
        json={"handles": {"leetcode": "not a handle"}},
        headers=HEADERS,
    )

    assert response.status_code == 422


def test_refresh_endpoint_requires_at_least_one_platform(client: TestClient) -> None:
    response = client.post("/api/coding/refresh", json={"handles": {}}, headers=HEADERS)

    assert response.status_code == 422


def test_github_contributions_route(client: TestClient) -> None:
    response = client.get("/api/coding/github/octo/contributions")

    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "octo"
    assert body["contribution_score"] == 45
    assert body["total_contributions"] == 16


def test_github_contributions_rate_limit(client: TestClient, github: _StubGitHub) -> None:
    github.error = RateLimitError("GitHub API rate limit exceeded.", platform="github")

    response = client.get("/api/coding/github/octo/contributions")

    assert response.status_code == 429


@pytest.fixture()
def live_app(monkeypatch):
    monkeypatch.delenv("CODEMETRICS_DATABASE_URL", raising=False)
    get_settings.cache_clear()
    try:
        with TestClient(app) as live:
            yield live
    finally:
        get_settings.cache_clear()


def test_lifespan_without_database_falls_back_to_memory_store(live_app: TestClient, clients) -> None:
    store = app.state.metrics_store
    assert isinstance(store, InMemoryMetricsStore)
    ttls = {platform: timedelta(minutes=5) for platform in Platform}
    cache = MetricsCache(store, clients, ttls, clock=lambda: NOW + timedelta(seconds=30))
    app.state.metrics_service = MetricsService(cache)

    first = live_app.get("/api/coding/codeforces/tourist", headers=HEADERS)
    second = live_app.get("/api/coding/codeforces/tourist", headers=HEADERS)

    assert first.status_code == 200
    assert first.json()["cached"] is False
    assert second.json()["cached"] is True
    assert store.get("user-1", Platform.CODEFORCES) is not None


def test_dependency_resolves_service_built_at_startup(live_app: TestClient) -> None:
    service = app.state.metrics_service
    request = Request({"type": "http", "app": app})

    assert isinstance(service, MetricsService)
    assert get_metrics_service(request) is service
    assert get_metrics_service(Request({"type": "http", "app": app})) is service
