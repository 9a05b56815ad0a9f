"""LeetCode profile metrics from the public GraphQL endpoint."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..errors import NotFoundError, RateLimitError, UpstreamError
from ..http_fetch import BROWSER_USER_AGENT, RetryPolicy, request_with_retry
from ..models import Platform, PlatformMetrics
from ..normalization import MAX_PROBLEM_COUNT, MAX_SUBMISSION_COUNT, build_metrics, sane_count, sane_rating, utc_now

logger = logging.getLogger(__name__)

LEETCODE_GRAPHQL_URL = "https://leetcode.com/graphql"
RECENT_SUBMISSION_LIMIT = 10
DIFFICULTIES = ("Easy", "Medium", "Hard", "All")

PROFILE_QUERY = """
query getUserProfile($username: String!) {
  matchedUser(username: $username) {
    username
    profile {
      realName
      userAvatar
      ranking
      reputation
      countryName
      aboutMe
    }
    submitStats {
      acSubmissionNum { difficulty count submissions }
      totalSubmissionNum { difficulty count submissions }
    }
    badges { id displayName icon creationDate }
  }
  userContestRanking(username: $username) {
    attendedContestsCount
    rating
    globalRanking
    topPercentage
  }
  recentSubmissionList(username: $username, limit: 20) {
    title
    timestamp
    statusDisplay
    lang
  }
}
"""


def _by_difficulty(entries: Optional[List[Dict[str, Any]]], field: str) -> Dict[str, Optional[int]]:
    found: Dict[str, Any] = {}
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("difficulty") in DIFFICULTIES:
            found[entry["difficulty"]] = entry.get(field)
    upper = MAX_PROBLEM_COUNT if field == "count" else MAX_SUBMISSION_COUNT
    # A difficulty absent from the payload means nothing solved/submitted there.
    return {difficulty: sane_count(found.get(difficulty, 0), upper=upper) for difficulty in DIFFICULTIES}


def acceptance_rate(solved: Optional[int], submitted: Optional[int]) -> float:
    if not solved or not submitted:
        return 0.0
    return round(solved / submitted * 100, 2)


def parse_contest(contest: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not contest:
        return None
    top_percentage = contest.get("topPercentage")
    return {
        "attended": sane_count(contest.get("attendedContestsCount")) or 0,
        "rating": sane_rating(contest.get("rating")),
        "globalRanking": sane_count(contest.get("globalRanking")),
        "topPercentage": round(float(top_percentage), 2) if isinstance(top_percentage, (int, float)) else None,
    }


class LeetCodeClient:
    platform = Platform.LEETCODE

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        endpoint: str = LEETCODE_GRAPHQL_URL,
        timeout: float = 8.0,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._http = http
        self._endpoint = endpoint
        self._timeout = timeout
        self._policy = policy or RetryPolicy(max_retries=1, delay_seconds=1.0)
        self._clock = clock

    async def fetch_profile(self, username: str) -> PlatformMetrics:
        data = await self._query(username)
        user = data.get("matchedUser")
        if not user:
            raise NotFoundError(f"LeetCode user not found: {username}", platform=self.platform.value)
        profile = user.get("profile") or {}
        submit_stats = user.get("submitStats") or {}

        solved = _by_difficulty(submit_stats.get("acSubmissionNum"), "count")
        accepted_submissions = _by_difficulty(submit_stats.get("acSubmissionNum"), "submissions")
        total_submissions = _by_difficulty(submit_stats.get("totalSubmissionNum"), "submissions")
        contest = parse_contest(data.get("userContestRanking"))
        recent = [
            {
                "title": submission.get("title"),
                "status": submission.get("statusDisplay"),
                "language": submission.get("lang"),
                "timestamp": submission.get("timestamp"),
            }
            for submission in (data.get("recentSubmissionList") or [])[:RECENT_SUBMISSION_LIMIT]
            if isinstance(submission, dict)
        ]
        badges = [
            {"name": badge.get("displayName"), "icon": badge.get("icon"), "date": badge.get("creationDate")}
            for badge in user.get("badges") or []
            if isinstance(badge, dict)
        ]

        counters = {
            "easySolved": solved["Easy"],
            "mediumSolved": solved["Medium"],
            "hardSolved": solved["Hard"],
            "totalSolved": solved["All"],
            "easySubmissions": total_submissions["Easy"],
            "mediumSubmissions": total_submissions["Medium"],
            "hardSubmissions": total_submissions["Hard"],
            "totalSubmissions": total_submissions["All"],
            "acceptedSubmissions": accepted_submissions["All"],
            "contestsAttended": contest["attended"] if contest else 0,
            "reputation": sane_count(profile.get("reputation")),
        }
        return build_metrics(
            Platform.LEETCODE,
            username,
            f"https://leetcode.com/{username}",
            fetched_at=self._clock(),
            rating_or_score=contest["rating"] if contest else None,
            counters=counters,
            details={
                "username": user.get("username") or username,
                "name": profile.get("realName") or None,
                "avatar": profile.get("userAvatar") or None,
                "ranking": sane_count(profile.get("ranking")),
                "countryName": profile.get("countryName") or None,
                "aboutMe": profile.get("aboutMe") or None,
                "acceptanceRate": acceptance_rate(solved["All"], total_submissions["All"]),
                "contest": contest,
                "badges": badges,
                "recentSubmissions": recent,
            },
        )

    async def _query(self, username: str) -> Dict[str, Any]:
        response = await request_with_retry(
            self._http,
            "POST",
            self._endpoint,
            timeout=self._timeout,
            policy=self._policy,
            platform=self.platform.value,
            json={"query": PROFILE_QUERY, "variables": {"username": username}},
            headers={
                "Content-Type": "application/json",
                "Referer": "https://leetcode.com",
                "Origin": "https://leetcode.com",
                "User-Agent": BROWSER_USER_AGENT,
            },
        )
        if response.status_code == 429:
            raise RateLimitError("LeetCode is throttling requests. Please try again later.", platform=self.platform.value)
        if response.status_code >= 400:
            logger.warning("LeetCode GraphQL request failed with HTTP %s", response.status_code)
            raise UpstreamError(
                f"LeetCode API request failed (HTTP {response.status_code}).", platform=self.platform.value
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("LeetCode returned a non-JSON response.", platform=self.platform.value) from exc
        if not isinstance(payload, dict):
            raise UpstreamError("LeetCode returned an unexpected payload.", platform=self.platform.value)

        data = payload.get("data") or {}
        errors = payload.get("errors") or []
        if errors and not data.get("matchedUser"):
            messages = " ".join(str(error.get("message", "")) for error in errors if isinstance(error, dict))
            if "does not exist" in messages.lower() or not messages:
                raise NotFoundError(f"LeetCode user not found: {username}", platform=self.platform.value)
            logger.warning("LeetCode GraphQL errors for %s: %s", username, messages)
            raise UpstreamError("LeetCode GraphQL query failed.", platform=self.platform.value)
        return data


__all__ = ["LeetCodeClient", "PROFILE_QUERY", "acceptance_rate", "parse_contest"]
