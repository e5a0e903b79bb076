"""Drive one import job from ``pending`` to a terminal state.

Items are handled strictly one at a time. Every item produces exactly one
``import_job_items`` row and a counter update, so a polling client never sees
progress that is more than one item stale. Problems with a single item are
returned as an :class:`ItemResult` rather than raised; only failures of the
job store itself end the job early.
"""
import asyncio
import logging
import uuid
from typing import Sequence

from .config import IMPORT_BATCH_SIZE, IMPORT_MATCH_SCORE_FLOOR
from .conflicts import should_update
from .jobs import JobStore
from .library import LibraryStore
from .matcher import TitleMatcher
from .schemas import ImportConfig, ImportItem, ItemResult, JobCounters

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Import job was cancelled"
REWATCH_TAG = "rewatch"


def _library_status(item: ImportItem) -> str:
    return "watchlist" if item.status == "watchlist" else "finished"


def _no_match_message(item: ImportItem) -> str:
    return f'No TMDB match found for "{item.title}" ({item.year or "unknown year"})'


def _excluded_by_config(item: ImportItem, config: ImportConfig) -> bool:
    if item.status == "watchlist" and not config.import_watchlist:
        return True
    if item.status == "watched" and not config.import_watched:
        return True
    return False


def _batches(items: Sequence[ImportItem], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class JobProcessor:
    def __init__(
        self,
        matcher: TitleMatcher,
        library: LibraryStore,
        jobs: JobStore,
        *,
        batch_size: int = IMPORT_BATCH_SIZE,
        score_floor: float = IMPORT_MATCH_SCORE_FLOOR,
    ) -> None:
        self.matcher = matcher
        self.library = library
        self.jobs = jobs
        self.batch_size = max(1, batch_size)
        self.score_floor = score_floor

    async def process_item(self, user_id: uuid.UUID, item: ImportItem, config: ImportConfig) -> ItemResult:
        if _excluded_by_config(item, config):
            return ItemResult(status="skipped", action="skipped_existing")

        try:
            match = await self.matcher.resolve(item.title, item.year)
        except Exception as exc:
            logger.warning("Catalog lookup failed for %r: %s", item.title, exc)
            return ItemResult(
                status="failed",
                error_message=f'Catalog lookup failed for "{item.title}": {exc}',
            )

        if match is None:
            return ItemResult(status="failed", error_message=_no_match_message(item))

        if match.confidence == "failed":
            if match.score < self.score_floor:
                return ItemResult(status="failed", error_message=_no_match_message(item))
            return ItemResult.from_match(
                match,
                "failed",
                error_message=f'Low confidence match: "{item.title}" → "{match.matched_title}" ({match.year})',
            )

        media_kind = match.media_kind
        try:
            if await self.library.media_exists(user_id, match.catalog_id, media_kind):
                existing_rating = await self.library.get_rating(user_id, match.catalog_id, media_kind)
                incoming_rating = item.rating if config.import_ratings else None

                if config.conflict_strategy == "skip":
                    return ItemResult.from_match(match, "skipped", "skipped_existing")

                if should_update(existing_rating, incoming_rating, config.conflict_strategy):
                    media_id = await self.library.get_media_id(match.catalog_id, media_kind)
                    if media_id is None:
                        return ItemResult.from_match(
                            match,
                            "failed",
                            error_message=f"No library record for TMDB {media_kind} {match.catalog_id}",
                        )
                    await self.library.update_rating(user_id, media_id, incoming_rating)
                    return ItemResult.from_match(match, "success", "updated")

                return ItemResult.from_match(match, "skipped", "skipped_existing")

            media_id = await self.library.upsert_media(
                match.catalog_id,
                media_kind,
                match.matched_title,
                match.poster_path,
                match.year,
            )
            rating = item.rating if config.import_ratings else None
            user_media_id = await self.library.set_user_media_status(
                user_id, media_id, _library_status(item), rating
            )

            if item.is_rewatch and config.mark_rewatch_as_tag:
                try:
                    await self.library.attach_system_tag(user_media_id, REWATCH_TAG)
                except Exception:
                    logger.warning(
                        "Could not tag %r as rewatch (user_media_id=%s)", match.matched_title, user_media_id,
                        exc_info=True,
                    )

            return ItemResult.from_match(match, "success", "created")
        except Exception as exc:
            logger.warning("Import item %r failed: %s", item.title, exc)
            return ItemResult.from_match(match, "failed", error_message=str(exc) or exc.__class__.__name__)

    async def run(
        self,
        job_id: int,
        user_id: uuid.UUID,
        items: Sequence[ImportItem],
        config: ImportConfig,
    ) -> JobCounters:
        counters = JobCounters()
        try:
            await self.jobs.set_job_status(job_id, "processing")
            logger.info("Import job %s started with %d items", job_id, len(items))
            for batch in _batches(items, self.batch_size):
                for item in batch:
                    result = await self.process_item(user_id, item, config)
                    await self.jobs.insert_job_item(job_id, item, result)
                    counters.record(result)
                    await self.jobs.set_job_counters(
                        job_id,
                        counters.processed,
                        counters.successful,
                        counters.failed,
                        counters.skipped,
                    )
            await self.jobs.set_job_status(job_id, "completed")
        except asyncio.CancelledError:
            logger.info("Import job %s cancelled after %d items", job_id, counters.processed)
            await asyncio.shield(self.jobs.set_job_status(job_id, "failed", CANCELLED_MESSAGE))
            raise
        except Exception as exc:
            logger.exception("Import job %s failed", job_id)
            await self.jobs.set_job_status(job_id, "failed", str(exc) or exc.__class__.__name__)
            raise

        logger.info(
            "Import job %s completed: %d succeeded, %d skipped, %d failed",
            job_id, counters.successful, counters.skipped, counters.failed,
        )
        return counters
