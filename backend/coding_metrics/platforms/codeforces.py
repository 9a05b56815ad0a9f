"""Codeforces profile metrics from the public REST API.

Three calls are issued concurrently: ``user.info`` (required), ``user.rating``
and ``user.status`` (optional; a failure there degrades the record to partial
instead of failing the whole fetch).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from ..errors import NotFoundError, PlatformError, RateLimitError, UpstreamError
from ..http_fetch import BROWSER_HEADERS, RetryPolicy, request_with_retry
from ..models import Platform, PlatformMetrics
from ..normalization import MAX_PROBLEM_COUNT, build_metrics, sane_count, sane_rating, utc_now

logger = logging.getLogger(__name__)

CODEFORCES_API_URL = "https://codeforces.com/api"
SUBMISSION_FETCH_LIMIT = 2500
RATING_HISTORY_LIMIT = 10
# Codeforces is known to be flaky; gateway errors are worth one more attempt.
FLAKY_STATUSES = frozenset({502, 503, 504})


@dataclass(frozen=True)
class SubmissionStats:
    problems_solved: int
    accepted_submissions: int
    total_submissions: int
    avg_problem_rating: Optional[int]
    hit_fetch_limit: bool


def summarize_submissions(submissions: List[Dict[str, Any]], *, limit: int = SUBMISSION_FETCH_LIMIT) -> SubmissionStats:
    """Single pass over submissions.

    A problem counts once towards ``problems_solved`` however many accepted
    submissions it has; the average difficulty is taken over every accepted
    submission of a rated problem.
    """
    solved: Set[str] = set()
    rating_sum = 0
    rated_count = 0
    accepted = 0
    for submission in submissions:
        if not isinstance(submission, dict) or submission.get("verdict") != "OK":
            continue
        accepted += 1
        problem = submission.get("problem")
        if not isinstance(problem, dict):
            continue
        contest_id = problem.get("contestId", problem.get("problemsetName"))
        solved.add(f"{contest_id}-{problem.get('index')}")
        rating = problem.get("rating")
        if isinstance(rating, int) and rating > 0:
            rating_sum += rating
            rated_count += 1

    return SubmissionStats(
        problems_solved=len(solved),
        accepted_submissions=accepted,
        total_submissions=len(submissions),
        avg_problem_rating=round(rating_sum / rated_count) if rated_count else None,
        hit_fetch_limit=len(submissions) >= limit,
    )


def max_rating(history: List[Dict[str, Any]], current_rating: Optional[int]) -> Optional[int]:
    ratings = [entry["newRating"] for entry in history if isinstance(entry.get("newRating"), int)]
    if ratings:
        return max(ratings)
    return current_rating


def recent_rating_changes(history: List[Dict[str, Any]], limit: int = RATING_HISTORY_LIMIT) -> List[Dict[str, Any]]:
    changes = []
    for entry in history[-limit:]:
        old_rating = entry.get("oldRating") or 0
        new_rating = entry.get("newRating") or 0
        updated = entry.get("ratingUpdateTimeSeconds")
        changes.append(
            {
                "contestId": entry.get("contestId"),
                "contestName": entry.get("contestName"),
                "rank": entry.get("rank"),
                "oldRating": old_rating,
                "newRating": new_rating,
                "ratingChange": new_rating - old_rating,
                "date": (
                    datetime.fromtimestamp(updated, tz=timezone.utc).isoformat()
                    if isinstance(updated, (int, float))
                    else None
                ),
            }
        )
    return changes


class CodeforcesClient:
    platform = Platform.CODEFORCES

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: str = CODEFORCES_API_URL,
        timeout: float = 6.0,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._policy = policy or RetryPolicy(
            max_retries=1, delay_seconds=1.0, retry_on_timeout=True, retry_statuses=FLAKY_STATUSES
        )
        self._clock = clock

    async def fetch_profile(self, handle: str) -> PlatformMetrics:
        user_result, rating_result, status_result = await asyncio.gather(
            self._call("user.info", {"handles": handle}),
            self._call("user.rating", {"handle": handle}),
            self._call("user.status", {"handle": handle, "from": 1, "count": SUBMISSION_FETCH_LIMIT}),
            return_exceptions=True,
        )
        if isinstance(user_result, BaseException):
            raise user_result
        if not user_result:
            raise NotFoundError(f"Codeforces user not found: {handle}", platform=self.platform.value)
        user = user_result[0]

        notes: List[str] = []
        history: Optional[List[Dict[str, Any]]] = None
        if isinstance(rating_result, BaseException):
            logger.warning("Codeforces rating history unavailable for %s: %s", handle, rating_result)
            notes.append("Rating history could not be fetched.")
        else:
            history = [entry for entry in rating_result if isinstance(entry, dict)]

        stats: Optional[SubmissionStats] = None
        if isinstance(status_result, BaseException):
            logger.warning("Codeforces submissions unavailable for %s: %s", handle, status_result)
            notes.append("Submissions could not be fetched.")
        else:
            stats = summarize_submissions(status_result)
            if stats.hit_fetch_limit:
                notes.append(
                    f"Solved-problem counts are approximate: only the latest {SUBMISSION_FETCH_LIMIT} "
                    "submissions were analysed."
                )

        rating = sane_rating(user.get("rating"))
        counters = {
            "problemsSolved": sane_count(stats.problems_solved, upper=MAX_PROBLEM_COUNT) if stats else None,
            "acceptedSubmissions": sane_count(stats.accepted_submissions) if stats else None,
            "submissionsFetched": sane_count(stats.total_submissions) if stats else None,
            "contestsParticipated": sane_count(len(history)) if history is not None else None,
            "maxRating": sane_rating(max_rating(history, rating or 0)) if history is not None else None,
            "friendOfCount": sane_count(user.get("friendOfCount", 0)),
        }
        registered = user.get("registrationTimeSeconds")
        return build_metrics(
            Platform.CODEFORCES,
            handle,
            f"https://codeforces.com/profile/{handle}",
            fetched_at=self._clock(),
            rating_or_score=rating if rating is not None else 0,
            counters=counters,
            details={
                "handle": user.get("handle") or handle,
                "firstName": user.get("firstName"),
                "lastName": user.get("lastName"),
                "avatar": user.get("titlePhoto") or user.get("avatar"),
                "rank": user.get("rank") or "newbie",
                "maxRank": user.get("maxRank") or user.get("rank") or "newbie",
                "contribution": user.get("contribution", 0),
                "country": user.get("country"),
                "city": user.get("city"),
                "organization": user.get("organization"),
                "registrationTime": (
                    datetime.fromtimestamp(registered, tz=timezone.utc).isoformat()
                    if isinstance(registered, (int, float))
                    else None
                ),
                "avgProblemRating": stats.avg_problem_rating if stats else None,
                "isApproximation": bool(stats and stats.hit_fetch_limit),
                "ratingHistory": recent_rating_changes(history) if history else [],
            },
            notes=notes,
            partial=bool(stats and stats.hit_fetch_limit),
        )

    async def _call(self, method: str, params: Dict[str, Any]) -> List[Any]:
        response = await request_with_retry(
            self._http,
            "GET",
            f"{self._base_url}/{method}",
            timeout=self._timeout,
            policy=self._policy,
            platform=self.platform.value,
            params=params,
            headers=BROWSER_HEADERS,
        )
        if response.status_code == 429:
            raise RateLimitError(
                "Codeforces API rate limit exceeded. Please try again in a few seconds.",
                platform=self.platform.value,
            )
        # Codeforces reports application errors as HTTP 400 with a JSON body.
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Codeforces {method} returned an unreadable response (HTTP {response.status_code}).",
                platform=self.platform.value,
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"Codeforces {method} returned an unexpected payload.", platform=self.platform.value)

        if payload.get("status") != "OK":
            raise self._failure(method, payload.get("comment") or "")
        result = payload.get("result")
        if not isinstance(result, list):
            raise UpstreamError(f"Codeforces {method} returned no result list.", platform=self.platform.value)
        return result

    def _failure(self, method: str, comment: str) -> PlatformError:
        lowered = comment.lower()
        if "limit" in lowered:
            return RateLimitError(
                "Codeforces API rate limit exceeded. Please try again in a few seconds.",
                platform=self.platform.value,
            )
        if "not found" in lowered:
            return NotFoundError("Codeforces user not found.", platform=self.platform.value)
        logger.warning("Codeforces %s failed: %s", method, comment)
        return UpstreamError(f"Codeforces {method} request failed.", platform=self.platform.value)


__all__ = [
    "CodeforcesClient",
    "SUBMISSION_FETCH_LIMIT",
    "SubmissionStats",
    "max_rating",
    "recent_rating_changes",
    "summarize_submissions",
]
