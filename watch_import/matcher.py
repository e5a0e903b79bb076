"""Resolve free-text titles from an export to TMDB entries.

Scores are on a 0-100 scale built from three parts: title similarity (up to
50), year proximity (up to 30) and a log-scaled popularity tie-breaker (up
to 20). The score is diagnostic only; the confidence label is what the import
pipeline acts on.
"""
import logging
import math
import re
from typing import Any

from rapidfuzz.distance import Levenshtein

from . import tmdb
from .rate_limiter import RateLimiter
from .schemas import MatchConfidence, MatchResult, MediaKind

logger = logging.getLogger(__name__)

TITLE_EXACT_POINTS = 50.0
TITLE_SIMILARITY_POINTS = 40.0
TITLE_CONTAINS_POINTS = 5.0
YEAR_POINTS_BY_DIFF = {0: 30.0, 1: 20.0, 2: 10.0}
YEAR_ANY_DATE_POINTS = 5.0
POPULARITY_MAX_POINTS = 20.0

EXACT_SCORE = 70.0
FUZZY_SCORE = 40.0
EXACT_SIMILARITY = 0.9

LEADING_ARTICLE_RE = re.compile(r"^(the|a|an)\s+")
TRAILING_ARTICLE_RE = re.compile(r"^(?P<rest>.+?),\s*(?P<article>the|a|an)$")
PUNCTUATION_RE = re.compile(r"[^\w\s]")
WHITESPACE_RE = re.compile(r"\s+")


def normalize_title(value: str) -> str:
    normalized = str(value or "").lower().strip()
    # Catalog sort form: "Matrix, The" -> "the matrix"
    trailing = TRAILING_ARTICLE_RE.match(normalized)
    if trailing:
        normalized = f"{trailing.group('article')} {trailing.group('rest')}"
    normalized = LEADING_ARTICLE_RE.sub("", normalized, count=1)
    normalized = PUNCTUATION_RE.sub(" ", normalized)
    return WHITESPACE_RE.sub(" ", normalized).strip()


def title_similarity(left: str, right: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]."""
    if left == right:
        return 1.0
    if not left or not right:
        return 0.0
    return Levenshtein.normalized_similarity(left, right)


def extract_year(value: str | None) -> int | None:
    if not value:
        return None
    head = str(value).strip()[:4]
    return int(head) if head.isdigit() else None


def _candidate_title(candidate: dict) -> str:
    return str(candidate.get("title") or candidate.get("name") or "")


def _candidate_year(candidate: dict) -> int | None:
    return extract_year(candidate.get("release_date") or candidate.get("first_air_date"))


def _popularity_points(popularity: Any) -> float:
    try:
        value = float(popularity or 0.0)
    except (TypeError, ValueError):
        return 0.0
    if value <= 0:
        return 0.0
    return min(POPULARITY_MAX_POINTS, math.log10(value + 1) * 5)


def score_candidate(title: str, year: int | None, candidate: dict) -> float:
    search_title = normalize_title(title)
    result_title = normalize_title(_candidate_title(candidate))

    score = 0.0
    if search_title == result_title:
        score += TITLE_EXACT_POINTS
    else:
        score += title_similarity(search_title, result_title) * TITLE_SIMILARITY_POINTS
        if search_title in result_title or result_title in search_title:
            score += TITLE_CONTAINS_POINTS

    result_year = _candidate_year(candidate)
    if year and result_year:
        score += YEAR_POINTS_BY_DIFF.get(abs(year - result_year), 0.0)
    elif not year and result_year:
        score += YEAR_ANY_DATE_POINTS

    score += _popularity_points(candidate.get("popularity"))
    return score


def classify_confidence(title: str, year: int | None, candidate: dict, score: float) -> MatchConfidence:
    search_title = normalize_title(title)
    result_title = normalize_title(_candidate_title(candidate))
    result_year = _candidate_year(candidate)

    if search_title == result_title:
        if not year:
            return "exact"
        if result_year and year == result_year:
            return "exact"

    if (
        year
        and result_year
        and abs(year - result_year) <= 1
        and title_similarity(search_title, result_title) >= EXACT_SIMILARITY
    ):
        return "exact"

    if score >= EXACT_SCORE:
        return "exact"
    if score >= FUZZY_SCORE:
        return "fuzzy"
    return "failed"


def pick_best(title: str, year: int | None, candidates: list[dict]) -> tuple[dict, float] | None:
    best_row: dict | None = None
    best_score = -math.inf
    # Strict ">" keeps the first candidate on ties.
    for row in candidates:
        score = score_candidate(title, year, row)
        if score > best_score:
            best_score = score
            best_row = row
    if best_row is None:
        return None
    return best_row, best_score


class TitleMatcher:
    def __init__(self, limiter: RateLimiter, catalog=tmdb) -> None:
        self.limiter = limiter
        self.catalog = catalog

    async def _search(self, media_kind: MediaKind, title: str, year: int | None) -> list[dict]:
        search = self.catalog.search_tv if media_kind == "tv" else self.catalog.search_movie
        await self.limiter.acquire()
        data = await search(title, year=year)
        return [row for row in (data or {}).get("results") or [] if isinstance(row, dict)]

    async def resolve(self, title: str, year: int | None = None, media_kind: MediaKind = "movie") -> MatchResult | None:
        query = str(title or "").strip()
        if not query:
            return None

        results = await self._search(media_kind, query, year)
        # Exports are often off by a year; loosen the query before giving up.
        if not results and year:
            logger.debug("No %s results for %r (%s), retrying without year", media_kind, query, year)
            results = await self._search(media_kind, query, None)
        if not results:
            return None

        best = pick_best(query, year, results)
        if best is None:
            return None
        row, score = best
        return MatchResult(
            catalog_id=int(row.get("id") or 0),
            matched_title=_candidate_title(row),
            year=_candidate_year(row) or 0,
            poster_path=str(row.get("poster_path") or "").strip() or None,
            confidence=classify_confidence(query, year, row, score),
            score=round(score, 2),
            media_kind=media_kind,
        )
