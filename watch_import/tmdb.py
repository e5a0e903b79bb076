import logging
import os

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from .config import TMDB_HTTP_RETRIES

logger = logging.getLogger(__name__)

BASE_URL = "https://api.themoviedb.org/3"
_client: httpx.AsyncClient | None = None


def _get_api_key() -> str:
    key = os.environ.get("TMDB_API_KEY", "")
    if not key:
        raise RuntimeError("TMDB_API_KEY environment variable not set.")
    return key


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=10)
    return _client


async def close_client() -> None:
    global _client
    if _client:
        await _client.aclose()
        _client = None


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429


_backoff = wait_exponential_jitter(initial=0.5, max=8, jitter=0.2)


def _wait_seconds(retry_state: RetryCallState) -> float:
    """Honour ``Retry-After`` on a 429, otherwise back off exponentially."""
    exc = retry_state.outcome.exception()
    if isinstance(exc, httpx.HTTPStatusError):
        raw = (exc.response.headers.get("retry-after") or "").strip()
        try:
            return max(0.0, float(raw))
        except ValueError:
            pass
    return _backoff(retry_state)


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "TMDB request failed (%s), retry %d in %.2fs",
        retry_state.outcome.exception(),
        retry_state.attempt_number,
        retry_state.next_action.sleep,
    )


async def get_with_retry(path: str, params: dict | None = None, retries: int = TMDB_HTTP_RETRIES) -> dict:
    """GET a TMDB path, retrying 429s and network errors.

    Any other HTTP error is raised immediately.
    """
    params = dict(params or {})
    params["api_key"] = _get_api_key()
    client = await _get_client()
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(retries + 1),
        wait=_wait_seconds,
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            resp = await client.get(f"{BASE_URL}{path}", params=params)
            resp.raise_for_status()
    return resp.json()


async def search_movie(query: str, year: int | None = None, page: int = 1) -> dict:
    params = {"query": query, "page": page, "include_adult": "false"}
    if year:
        params["year"] = year
    return await get_with_retry("/search/movie", params)


async def search_tv(query: str, year: int | None = None, page: int = 1) -> dict:
    params = {"query": query, "page": page, "include_adult": "false"}
    if year:
        params["first_air_date_year"] = year
    return await get_with_retry("/search/tv", params)
