import uuid

from sqlalchemy import func, select

from watch_import.models import ImportJob, Tag, UserMediaTag
from watch_import.schemas import ImportItem, ItemResult


async def test_upsert_media_is_idempotent(library):
    first = await library.upsert_media(42, "movie", "Inception", None, 2010)
    second = await library.upsert_media(42, "movie", "Inception", "/poster.jpg", 2010)
    assert first == second
    assert await library.get_media_id(42, "movie") == first
    assert await library.get_media_id(42, "tv") is None


async def test_user_media_status_and_rating(library, user_id):
    media_id = await library.upsert_media(42, "movie", "Inception", None, 2010)
    assert await library.media_exists(user_id, 42, "movie") is False

    user_media_id = await library.set_user_media_status(user_id, media_id, "finished", 3.0)
    assert await library.media_exists(user_id, 42, "movie") is True
    assert await library.media_exists(uuid.uuid4(), 42, "movie") is False
    assert await library.get_rating(user_id, 42, "movie") == 3.0

    # A missing rating leaves the stored one alone.
    again = await library.set_user_media_status(user_id, media_id, "watchlist", None)
    assert again == user_media_id
    assert await library.get_rating(user_id, 42, "movie") == 3.0

    assert await library.update_rating(user_id, media_id, 5.0) is True
    assert await library.get_rating(user_id, 42, "movie") == 5.0
    assert await library.update_rating(uuid.uuid4(), media_id, 1.0) is False


async def test_attach_system_tag_once(library, session_factory, user_id):
    media_id = await library.upsert_media(7, "movie", "Heat", None, 1995)
    user_media_id = await library.set_user_media_status(user_id, media_id, "finished")

    await library.attach_system_tag(user_media_id, "rewatch")
    await library.attach_system_tag(user_media_id, "rewatch")

    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(UserMediaTag)) == 1
        tag = (await db.execute(select(Tag))).scalar_one()
    assert tag.slug == "rewatch"
    assert tag.label == "Rewatch"
    assert tag.kind == "system"
    assert tag.user_id is None


async def test_job_lifecycle(jobs, user_id):
    job_id = await jobs.create_job(user_id, "letterboxd", 2)
    job = await jobs.get_job(job_id, user_id)
    assert job.status == "pending"
    assert job.started_at is None

    await jobs.set_job_status(job_id, "processing")
    await jobs.set_job_counters(job_id, 1, 1, 0, 0)
    job = await jobs.get_job(job_id, user_id)
    assert job.status == "processing"
    assert job.started_at is not None
    assert job.processed_items == 1

    await jobs.set_job_status(job_id, "failed", "job store unavailable")
    job = await jobs.get_job(job_id, user_id)
    assert job.status == "failed"
    assert job.completed_at is not None
    assert job.error_message == "job store unavailable"


async def test_get_job_is_scoped_to_user(jobs, user_id):
    job_id = await jobs.create_job(user_id, "csv", 1)
    assert await jobs.get_job(job_id, uuid.uuid4()) is None


async def test_job_items_keep_input_order(jobs, user_id):
    job_id = await jobs.create_job(user_id, "letterboxd", 3)
    items = [
        ImportItem(title="Heat", year=1995, original_rating=9, status="watched"),
        ImportItem(title="Unknown", year=2099),
        ImportItem(title="Alien", year=1979, status="watchlist"),
    ]
    results = [
        ItemResult(status="success", action="created", catalog_id=949, matched_title="Heat", match_confidence="exact"),
        ItemResult(status="failed", error_message="No TMDB match found"),
        ItemResult(status="skipped", action="skipped_existing"),
    ]
    for item, result in zip(items, results):
        await jobs.insert_job_item(job_id, item, result)

    rows = await jobs.list_job_items(job_id)
    assert [row.source_title for row in rows] == ["Heat", "Unknown", "Alien"]
    assert rows[0].source_rating == 9
    assert rows[0].catalog_id == 949
    assert rows[2].result_action == "skipped_existing"

    failed = await jobs.list_job_items(job_id, failed_only=True)
    assert [row.source_title for row in failed] == ["Unknown"]


async def test_list_and_delete_jobs(jobs, session_factory, user_id):
    ids = [await jobs.create_job(user_id, "letterboxd", 1) for _ in range(3)]
    other = await jobs.create_job(uuid.uuid4(), "letterboxd", 1)

    listed = await jobs.list_user_jobs(user_id, limit=2)
    assert [job.id for job in listed] == [ids[2], ids[1]]

    await jobs.insert_job_item(ids[0], ImportItem(title="Heat"), ItemResult(status="skipped"))
    assert await jobs.delete_job(ids[0], user_id) is True
    assert await jobs.delete_job(ids[0], user_id) is False
    assert await jobs.delete_job(other, user_id) is False
    assert await jobs.list_job_items(ids[0]) == []

    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(ImportJob)) == 3
