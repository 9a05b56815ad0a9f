"""CodeChef profile metrics scraped from the public profile page.

CodeChef has no official API, so every field comes from a regular expression
over the profile HTML. Each field has its own extractor so a layout change only
touches one function. ``fetch_profile`` never raises: failures produce a
partial record with an explanatory note.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

import httpx

from ..errors import PlatformError
from ..http_fetch import BROWSER_HEADERS, RetryPolicy, request_with_retry
from ..models import Platform, PlatformMetrics
from ..normalization import MAX_PROBLEM_COUNT, build_metrics, sane_count, sane_rating, utc_now

logger = logging.getLogger(__name__)

CODECHEF_BASE_URL = "https://www.codechef.com"
MIN_PROFILE_BYTES = 2000
MAX_CONTESTS = 10_000

SCRAPE_CAVEAT = "Scraped from the public CodeChef profile page; CodeChef has no official API."
JS_RENDERED_NOTE = (
    "No numeric fields could be extracted; the page may be rendered by JavaScript or its layout changed."
)

# (minimum rating, stars, rank label), highest tier first.
STAR_THRESHOLDS: Tuple[Tuple[int, int, str], ...] = (
    (2500, 7, "Red"),
    (2200, 6, "Orange"),
    (2000, 5, "Violet"),
    (1800, 4, "Blue"),
    (1600, 3, "Green"),
    (1400, 2, "Cyan"),
    (1200, 1, "Gray"),
)

_RATING = re.compile(r'class="rating-number"[^>]*>\s*(\d+)', re.IGNORECASE)
_HIGHEST_RATING = re.compile(r"Highest Rating\s*(\d+)", re.IGNORECASE)
_USERNAME = (
    re.compile(r'<h1[^>]*class="[^"]*h2-style[^"]*"[^>]*>\s*([^<]+?)\s*</h1>', re.IGNORECASE),
    re.compile(r'<span[^>]*class="[^"]*m-username--link[^"]*"[^>]*>\s*([^<]+?)\s*</span>', re.IGNORECASE),
)
_COUNTRY = (
    re.compile(r'<span[^>]*class="user-country-name"[^>]*>\s*([^<]+?)\s*</span>', re.IGNORECASE),
    re.compile(r"<label>\s*Country:?\s*</label>\s*<span[^>]*>\s*([^<]+?)\s*</span>", re.IGNORECASE),
)
_PROBLEMS_SOLVED = (
    re.compile(r"Total Problems Solved:?\s*(\d+)", re.IGNORECASE),
    re.compile(r"<h3>\s*(\d+)\s*</h3>\s*<p>\s*Problems Solved\s*</p>", re.IGNORECASE),
)
_CONTESTS = (
    re.compile(r'class="contest-participated-count"[^>]*>\s*(?:<b>\s*)?(\d+)', re.IGNORECASE),
    re.compile(r"Contests Participated:?\s*(?:<[^>]+>\s*)*(\d+)", re.IGNORECASE),
)


def calculate_stars(rating: int) -> int:
    for minimum, stars, _ in STAR_THRESHOLDS:
        if rating >= minimum:
            return stars
    return 0


def rank_label(rating: int) -> str:
    for minimum, _, label in STAR_THRESHOLDS:
        if rating >= minimum:
            return label
    return "Unrated"


def _first_match(html: str, patterns: Sequence[Pattern[str]]) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(html)
        if match:
            return match.group(1).strip()
    return None


def extract_rating(html: str) -> Optional[int]:
    match = _RATING.search(html)
    return sane_rating(match.group(1)) if match else None


def extract_highest_rating(html: str) -> Optional[int]:
    match = _HIGHEST_RATING.search(html)
    return sane_rating(match.group(1)) if match else None


def extract_username(html: str) -> Optional[str]:
    return _first_match(html, _USERNAME) or None


def extract_country(html: str) -> Optional[str]:
    return _first_match(html, _COUNTRY) or None


def extract_problems_solved(html: str) -> Optional[int]:
    return sane_count(_first_match(html, _PROBLEMS_SOLVED), upper=MAX_PROBLEM_COUNT)


def extract_contests_participated(html: str) -> Optional[int]:
    return sane_count(_first_match(html, _CONTESTS), upper=MAX_CONTESTS)


class CodeChefClient:
    platform = Platform.CODECHEF

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: str = CODECHEF_BASE_URL,
        timeout: float = 10.0,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._policy = policy or RetryPolicy(max_retries=1, delay_seconds=2.5)
        self._clock = clock

    def profile_url(self, handle: str) -> str:
        return f"{self._base_url}/users/{handle}"

    async def fetch_profile(self, handle: str) -> PlatformMetrics:
        try:
            html = await self._fetch_html(handle)
        except _ProfileUnavailable as exc:
            return self._unavailable(handle, str(exc))
        except PlatformError as exc:
            logger.warning("CodeChef fetch failed for %s: %s", handle, exc)
            return self._unavailable(handle, f"Failed to fetch the CodeChef profile ({exc.message}).")
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error fetching CodeChef profile for %s", handle)
            return self._unavailable(handle, "Failed to fetch the CodeChef profile.")

        try:
            return self.parse_profile(handle, html)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error parsing CodeChef profile for %s", handle)
            return self._unavailable(handle, "The CodeChef profile page could not be parsed.")

    def parse_profile(self, handle: str, html: str) -> PlatformMetrics:
        rating = extract_rating(html)
        numeric: Dict[str, Optional[int]] = {
            "highestRating": extract_highest_rating(html),
            "problemsSolved": extract_problems_solved(html),
            "contestsParticipated": extract_contests_participated(html),
        }
        username = extract_username(html)
        country = extract_country(html)

        missing: List[str] = [name for name, value in numeric.items() if value is None]
        if rating is None:
            missing.insert(0, "rating")
        if username is None:
            missing.append("username")
        if country is None:
            missing.append("country")

        notes = [SCRAPE_CAVEAT]
        if rating is None and all(value is None for value in numeric.values()):
            notes.append(JS_RENDERED_NOTE)
        elif missing:
            notes.append(f"Could not extract: {', '.join(missing)}.")

        counters: Dict[str, Optional[int]] = {
            "stars": calculate_stars(rating) if rating is not None else None,
            **numeric,
        }
        return build_metrics(
            Platform.CODECHEF,
            handle,
            self.profile_url(handle),
            fetched_at=self._clock(),
            rating_or_score=rating,
            counters=counters,
            details={
                "username": username,
                "country": country,
                "rank": rank_label(rating) if rating is not None else None,
            },
            notes=notes,
            partial=bool(missing),
        )

    async def _fetch_html(self, handle: str) -> str:
        response = await request_with_retry(
            self._http,
            "GET",
            self.profile_url(handle),
            timeout=self._timeout,
            policy=self._policy,
            platform=self.platform.value,
            headers=BROWSER_HEADERS,
        )
        if response.status_code == 404 or response.is_redirect:
            raise _ProfileUnavailable("CodeChef profile not found; please verify the handle.")
        if response.status_code >= 400:
            raise _ProfileUnavailable(f"CodeChef returned HTTP {response.status_code}.")
        if len(response.content) < MIN_PROFILE_BYTES:
            raise _ProfileUnavailable("CodeChef returned an incomplete profile page.")
        return response.text

    def _unavailable(self, handle: str, reason: str) -> PlatformMetrics:
        return build_metrics(
            Platform.CODECHEF,
            handle,
            self.profile_url(handle),
            fetched_at=self._clock(),
            rating_or_score=None,
            counters={
                "stars": None,
                "highestRating": None,
                "problemsSolved": None,
                "contestsParticipated": None,
            },
            details={"username": None, "country": None, "rank": None},
            notes=[SCRAPE_CAVEAT, reason],
            partial=True,
        )


class _ProfileUnavailable(Exception):
    pass


__all__ = [
    "CodeChefClient",
    "MIN_PROFILE_BYTES",
    "STAR_THRESHOLDS",
    "calculate_stars",
    "extract_contests_participated",
    "extract_country",
    "extract_highest_rating",
    "extract_problems_solved",
    "extract_rating",
    "extract_username",
    "rank_label",
]
