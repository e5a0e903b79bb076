import asyncio
import logging
import uuid
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import tmdb
from .jobs import JobStore
from .library import LibraryStore
from .matcher import TitleMatcher
from .processor import CANCELLED_MESSAGE, JobProcessor
from .rate_limiter import RateLimiter
from .schemas import TERMINAL_JOB_STATUSES, ImportConfig, ImportItem

logger = logging.getLogger(__name__)


def build_runner(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    catalog=tmdb,
    limiter: RateLimiter | None = None,
) -> "ImportRunner":
    matcher = TitleMatcher(limiter or RateLimiter(), catalog=catalog)
    processor = JobProcessor(matcher, LibraryStore(session_factory), JobStore(session_factory))
    return ImportRunner(processor)


class ImportRunner:
    """Runs import jobs as background tasks on the current event loop."""

    def __init__(self, processor: JobProcessor) -> None:
        self.processor = processor
        self._tasks: dict[int, asyncio.Task] = {}

    def start(
        self,
        job_id: int,
        user_id: uuid.UUID,
        items: Sequence[ImportItem],
        config: ImportConfig,
    ) -> asyncio.Task:
        if job_id in self._tasks:
            raise RuntimeError(f"Import job {job_id} is already running")
        task = asyncio.create_task(
            self.processor.run(job_id, user_id, list(items), config),
            name=f"import-job-{job_id}",
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda done: self._on_done(job_id, done))
        return task

    def _on_done(self, job_id: int, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Import job %s ended with error: %s", job_id, exc)

    def is_running(self, job_id: int) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def cancel(self, job_id: int) -> bool:
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        # wait() does not raise, so the task's own outcome stays in the task.
        await asyncio.wait({task})
        # A task cancelled before its first step never reaches run()'s handler.
        jobs = self.processor.jobs
        status = await jobs.get_job_status(job_id)
        if status is not None and status not in TERMINAL_JOB_STATUSES:
            logger.info("Import job %s cancelled before it started", job_id)
            await jobs.set_job_status(job_id, "failed", CANCELLED_MESSAGE)
        return True

    async def shutdown(self) -> None:
        for job_id in list(self._tasks):
            await self.cancel(job_id)
