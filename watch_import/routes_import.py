import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import add_audit_log
from .auth import get_current_user_id
from .config import IMPORT_JOB_CREATE_RATE, IMPORT_MAX_ITEMS, IMPORT_RECENT_JOBS_LIMIT
from .database import get_db
from .jobs import JobStore, serialize_job, serialize_job_item
from .runner import ImportRunner
from .schemas import TERMINAL_JOB_STATUSES, ImportConfig, ImportItem, ImportSource

router = APIRouter(prefix="/api/import", tags=["import"])
limiter = Limiter(key_func=get_remote_address)


class CreateImportJobRequest(BaseModel):
    source: ImportSource
    items: list[ImportItem] = Field(default_factory=list)
    config: ImportConfig = Field(default_factory=ImportConfig)


def get_import_runner(request: Request) -> ImportRunner:
    return request.app.state.import_runner


def get_job_store(request: Request) -> JobStore:
    return request.app.state.import_runner.processor.jobs


async def _get_job_or_404(jobs: JobStore, job_id: int, user_id: uuid.UUID):
    job = await jobs.get_job(job_id, user_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Import job not found")
    return job


@router.post("/jobs")
@limiter.limit(IMPORT_JOB_CREATE_RATE)
async def create_import_job(
    request: Request,
    body: CreateImportJobRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    runner: ImportRunner = Depends(get_import_runner),
    jobs: JobStore = Depends(get_job_store),
    db: AsyncSession = Depends(get_db),
):
    if not body.items:
        raise HTTPException(status_code=400, detail="No items to import")
    if len(body.items) > IMPORT_MAX_ITEMS:
        raise HTTPException(
            status_code=400,
            detail=f"Too many items. Imports are limited to {IMPORT_MAX_ITEMS} titles.",
        )

    total_items = len(body.items)
    job_id = await jobs.create_job(user_id, body.source, total_items)
    add_audit_log(
        db,
        action="import.job_created",
        message=f"Import job created from {body.source} with {total_items} items.",
        actor_user_id=user_id,
        import_job_id=job_id,
    )
    await db.commit()

    runner.start(job_id, user_id, body.items, body.config)
    return {"ok": True, "job_id": job_id, "status": "pending", "total_items": total_items}


@router.get("/jobs")
async def list_import_jobs(
    user_id: uuid.UUID = Depends(get_current_user_id),
    jobs: JobStore = Depends(get_job_store),
):
    rows = await jobs.list_user_jobs(user_id, limit=IMPORT_RECENT_JOBS_LIMIT)
    return {"jobs": [serialize_job(job) for job in rows]}


@router.get("/jobs/{job_id:int}")
async def get_import_job(
    job_id: int,
    include_items: bool = Query(False),
    failed_only: bool = Query(False),
    user_id: uuid.UUID = Depends(get_current_user_id),
    jobs: JobStore = Depends(get_job_store),
):
    job = await _get_job_or_404(jobs, job_id, user_id)
    payload = serialize_job(job)
    if include_items:
        items = await jobs.list_job_items(job_id, failed_only=failed_only)
        payload["items"] = [serialize_job_item(item) for item in items]
    return payload


@router.get("/jobs/{job_id:int}/summary")
async def get_import_job_summary(
    job_id: int,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jobs: JobStore = Depends(get_job_store),
):
    job = await _get_job_or_404(jobs, job_id, user_id)
    duration = None
    if job.started_at and job.completed_at:
        duration = max(0, round((job.completed_at - job.started_at).total_seconds()))
    failed_items = await jobs.list_job_items(job_id, failed_only=True)
    return {
        "job_id": job.id,
        "status": job.status,
        "total_items": int(job.total_items or 0),
        "successful_items": int(job.successful_items or 0),
        "failed_items": int(job.failed_items or 0),
        "skipped_items": int(job.skipped_items or 0),
        "duration": duration,
        "error_message": job.error_message,
        "failed_items_list": [serialize_job_item(item) for item in failed_items],
    }


@router.post("/jobs/{job_id:int}/cancel")
async def cancel_import_job(
    job_id: int,
    user_id: uuid.UUID = Depends(get_current_user_id),
    runner: ImportRunner = Depends(get_import_runner),
    jobs: JobStore = Depends(get_job_store),
    db: AsyncSession = Depends(get_db),
):
    job = await _get_job_or_404(jobs, job_id, user_id)
    if job.status in TERMINAL_JOB_STATUSES or not await runner.cancel(job_id):
        raise HTTPException(status_code=409, detail="Import job is not running")
    add_audit_log(
        db,
        action="import.job_cancelled",
        message=f"Import job {job_id} cancelled by user.",
        actor_user_id=user_id,
        import_job_id=job_id,
    )
    await db.commit()
    refreshed = await jobs.get_job(job_id, user_id)
    return {"ok": True, "job": serialize_job(refreshed or job)}


@router.delete("/jobs/{job_id:int}")
async def delete_import_job(
    job_id: int,
    user_id: uuid.UUID = Depends(get_current_user_id),
    runner: ImportRunner = Depends(get_import_runner),
    jobs: JobStore = Depends(get_job_store),
    db: AsyncSession = Depends(get_db),
):
    await _get_job_or_404(jobs, job_id, user_id)
    if runner.is_running(job_id):
        await runner.cancel(job_id)
    deleted = await jobs.delete_job(job_id, user_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Import job not found")
    add_audit_log(
        db,
        action="import.job_deleted",
        message=f"Import job {job_id} deleted.",
        actor_user_id=user_id,
        import_job_id=job_id,
    )
    await db.commit()
    return {"ok": True, "removed": True}
