import logging

import httpx
import pytest

from watch_import import tmdb


@pytest.fixture
def mock_tmdb(monkeypatch):
    monkeypatch.setenv("TMDB_API_KEY", "test-key")
    monkeypatch.setattr(tmdb, "_backoff", lambda retry_state: 0.0)
    responses = []
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(tmdb, "_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    yield responses, seen
    monkeypatch.setattr(tmdb, "_client", None)


async def test_search_movie_sends_year_filter(mock_tmdb):
    responses, seen = mock_tmdb
    responses.append(httpx.Response(200, json={"results": [{"id": 1}]}))

    data = await tmdb.search_movie("Heat", year=1995)

    assert data == {"results": [{"id": 1}]}
    params = seen[0].url.params
    assert seen[0].url.path == "/3/search/movie"
    assert params["query"] == "Heat"
    assert params["year"] == "1995"
    assert params["api_key"] == "test-key"


async def test_search_tv_uses_first_air_date_year(mock_tmdb):
    responses, seen = mock_tmdb
    responses.append(httpx.Response(200, json={"results": []}))

    await tmdb.search_tv("Breaking Bad", year=2008)

    assert seen[0].url.path == "/3/search/tv"
    assert seen[0].url.params["first_air_date_year"] == "2008"
    assert "year" not in seen[0].url.params


async def test_search_without_year_omits_filter(mock_tmdb):
    responses, seen = mock_tmdb
    responses.append(httpx.Response(200, json={"results": []}))
    await tmdb.search_movie("Heat")
    assert "year" not in seen[0].url.params


async def test_throttled_request_is_retried(mock_tmdb):
    responses, seen = mock_tmdb
    responses.append(httpx.Response(429, headers={"Retry-After": "0"}))
    responses.append(httpx.Response(200, json={"results": []}))

    assert await tmdb.get_with_retry("/search/movie", {"query": "Heat"}) == {"results": []}
    assert len(seen) == 2


async def test_retry_after_header_sets_the_wait(mock_tmdb, caplog):
    responses, seen = mock_tmdb
    responses.append(httpx.Response(429, headers={"Retry-After": "0.01"}))
    responses.append(httpx.Response(200, json={"results": []}))

    with caplog.at_level(logging.WARNING, logger="watch_import.tmdb"):
        await tmdb.get_with_retry("/search/movie", {"query": "Heat"})
    assert "retry 1 in 0.01s" in caplog.text


async def test_throttling_gives_up_after_retries(mock_tmdb):
    responses, seen = mock_tmdb
    responses.extend(httpx.Response(429, headers={"Retry-After": "0"}) for _ in range(3))

    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        await tmdb.get_with_retry("/search/movie", {"query": "Heat"}, retries=2)
    assert excinfo.value.response.status_code == 429
    assert len(seen) == 3


async def test_network_errors_are_retried_then_raised(mock_tmdb):
    responses, seen = mock_tmdb
    responses.extend([httpx.ConnectError("boom")] * 3)

    with pytest.raises(httpx.ConnectError):
        await tmdb.get_with_retry("/search/movie", {"query": "Heat"}, retries=2)
    assert len(seen) == 3


async def test_other_http_errors_are_not_retried(mock_tmdb):
    responses, seen = mock_tmdb
    responses.append(httpx.Response(401, json={"status_message": "Invalid API key"}))

    with pytest.raises(httpx.HTTPStatusError):
        await tmdb.get_with_retry("/search/movie", {"query": "Heat"})
    assert len(seen) == 1


async def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="TMDB_API_KEY"):
        await tmdb.search_movie("Heat")
