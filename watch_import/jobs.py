import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import ImportJob, ImportJobItem
from .schemas import ImportItem, ImportJobStatus, ItemResult


def serialize_job(job: ImportJob) -> dict:
    total = int(job.total_items or 0)
    processed = int(job.processed_items or 0)
    return {
        "id": job.id,
        "source": job.source,
        "status": job.status,
        "total_items": total,
        "processed_items": processed,
        "successful_items": int(job.successful_items or 0),
        "failed_items": int(job.failed_items or 0),
        "skipped_items": int(job.skipped_items or 0),
        "error_message": job.error_message,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "percentage": round(processed / total * 100) if total > 0 else 0,
    }


def serialize_job_item(item: ImportJobItem) -> dict:
    return {
        "id": item.id,
        "source_title": item.source_title,
        "source_year": item.source_year,
        "source_rating": item.source_rating,
        "source_status": item.source_status,
        "catalog_id": item.catalog_id,
        "matched_title": item.matched_title,
        "match_confidence": item.match_confidence,
        "status": item.status,
        "result_action": item.result_action,
        "error_message": item.error_message,
    }


class JobStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_job(self, user_id: uuid.UUID, source: str, total_items: int) -> int:
        async with self._session_factory() as db:
            job = ImportJob(user_id=user_id, source=source, status="pending", total_items=total_items)
            db.add(job)
            await db.commit()
            return job.id

    async def set_job_status(self, job_id: int, status: ImportJobStatus, error_message: str | None = None) -> None:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as db:
            job = await db.get(ImportJob, job_id)
            if job is None:
                raise LookupError(f"Import job {job_id} not found")
            job.status = status
            if status == "processing":
                job.started_at = now
            elif status in ("completed", "failed"):
                job.completed_at = now
                job.error_message = error_message
            await db.commit()

    async def set_job_counters(self, job_id: int, processed: int, successful: int, failed: int, skipped: int) -> None:
        async with self._session_factory() as db:
            job = await db.get(ImportJob, job_id)
            if job is None:
                raise LookupError(f"Import job {job_id} not found")
            job.processed_items = processed
            job.successful_items = successful
            job.failed_items = failed
            job.skipped_items = skipped
            await db.commit()

    async def insert_job_item(self, job_id: int, item: ImportItem, result: ItemResult) -> None:
        async with self._session_factory() as db:
            db.add(
                ImportJobItem(
                    import_job_id=job_id,
                    source_title=item.title,
                    source_year=item.year,
                    source_rating=item.original_rating,
                    source_status=item.status,
                    catalog_id=result.catalog_id,
                    matched_title=result.matched_title,
                    match_confidence=result.match_confidence,
                    status=result.status,
                    result_action=result.action,
                    error_message=result.error_message,
                )
            )
            await db.commit()

    async def get_job(self, job_id: int, user_id: uuid.UUID) -> ImportJob | None:
        async with self._session_factory() as db:
            return (
                await db.execute(
                    select(ImportJob).where(ImportJob.id == job_id, ImportJob.user_id == user_id)
                )
            ).scalar_one_or_none()

    async def get_job_status(self, job_id: int) -> str | None:
        async with self._session_factory() as db:
            return await db.scalar(select(ImportJob.status).where(ImportJob.id == job_id))

    async def list_user_jobs(self, user_id: uuid.UUID, limit: int = 20) -> list[ImportJob]:
        async with self._session_factory() as db:
            rows = (
                await db.execute(
                    select(ImportJob)
                    .where(ImportJob.user_id == user_id)
                    .order_by(ImportJob.created_at.desc(), ImportJob.id.desc())
                    .limit(limit)
                )
            ).scalars().all()
            return list(rows)

    async def list_job_items(self, job_id: int, failed_only: bool = False) -> list[ImportJobItem]:
        async with self._session_factory() as db:
            stmt = select(ImportJobItem).where(ImportJobItem.import_job_id == job_id)
            if failed_only:
                stmt = stmt.where(ImportJobItem.status == "failed")
            rows = (await db.execute(stmt.order_by(ImportJobItem.id.asc()))).scalars().all()
            return list(rows)

    async def delete_job(self, job_id: int, user_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            job_exists = await db.scalar(
                select(ImportJob.id).where(ImportJob.id == job_id, ImportJob.user_id == user_id)
            )
            if job_exists is None:
                return False
            await db.execute(delete(ImportJobItem).where(ImportJobItem.import_job_id == job_id))
            await db.execute(delete(ImportJob).where(ImportJob.id == job_id))
            await db.commit()
            return True
