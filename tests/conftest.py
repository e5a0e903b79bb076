import asyncio
import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from watch_import.jobs import JobStore
from watch_import.library import LibraryStore
from watch_import.matcher import TitleMatcher
from watch_import.models import Base
from watch_import.processor import JobProcessor


class FakeLimiter:
    def __init__(self):
        self.calls = 0

    async def acquire(self):
        self.calls += 1


class FakeCatalog:
    """Stands in for the tmdb module: ``search_movie`` / ``search_tv``."""

    def __init__(self, movies=None, tv=None, error=None):
        self.movies = movies or {}
        self.tv = tv or {}
        self.error = error
        self.calls = []

    def _lookup(self, table, query, year):
        # An explicit (query, year) entry wins over the year-agnostic one.
        if (query, year) in table:
            return table[(query, year)]
        return table.get(query, [])

    async def search_movie(self, query, year=None, page=1):
        self.calls.append(("movie", query, year))
        if self.error:
            raise self.error
        return {"results": list(self._lookup(self.movies, query, year))}

    async def search_tv(self, query, year=None, page=1):
        self.calls.append(("tv", query, year))
        if self.error:
            raise self.error
        return {"results": list(self._lookup(self.tv, query, year))}


class BlockingCatalog(FakeCatalog):
    """Never answers, so a job stays in flight until it is cancelled."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def search_movie(self, query, year=None, page=1):
        self.calls.append(("movie", query, year))
        self.started.set()
        await asyncio.Event().wait()


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def library(session_factory):
    return LibraryStore(session_factory)


@pytest.fixture
def jobs(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def fake_limiter():
    return FakeLimiter()


@pytest.fixture
def processor(catalog, fake_limiter, library, jobs):
    return JobProcessor(TitleMatcher(fake_limiter, catalog=catalog), library, jobs)
