import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import Media, Tag, UserMedia, UserMediaTag

SYSTEM_TAG_LABELS = {
    "rewatch": "Rewatch",
}


class LibraryStore:
    """Reads and writes a user's library on behalf of the import pipeline.

    Every method runs in its own session and commits before returning, so a
    write for one import item is durable on its own.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _user_media_stmt(user_id: uuid.UUID, catalog_id: int, media_type: str):
        return (
            select(UserMedia)
            .join(Media, Media.id == UserMedia.media_id)
            .where(
                UserMedia.user_id == user_id,
                Media.catalog_id == catalog_id,
                Media.media_type == media_type,
            )
        )

    async def media_exists(self, user_id: uuid.UUID, catalog_id: int, media_type: str) -> bool:
        async with self._session_factory() as db:
            row = (await db.execute(self._user_media_stmt(user_id, catalog_id, media_type))).scalar_one_or_none()
            return row is not None

    async def get_rating(self, user_id: uuid.UUID, catalog_id: int, media_type: str) -> float | None:
        async with self._session_factory() as db:
            row = (await db.execute(self._user_media_stmt(user_id, catalog_id, media_type))).scalar_one_or_none()
            return row.rating if row else None

    async def get_media_id(self, catalog_id: int, media_type: str) -> int | None:
        async with self._session_factory() as db:
            return await db.scalar(
                select(Media.id).where(Media.catalog_id == catalog_id, Media.media_type == media_type)
            )

    async def get_user_media_id(self, user_id: uuid.UUID, media_id: int) -> int | None:
        async with self._session_factory() as db:
            return await db.scalar(
                select(UserMedia.id).where(UserMedia.user_id == user_id, UserMedia.media_id == media_id)
            )

    async def upsert_media(
        self,
        catalog_id: int,
        media_type: str,
        title: str,
        poster_path: str | None,
        release_year: int | None,
    ) -> int:
        async with self._session_factory() as db:
            media = await self._find_media(db, catalog_id, media_type)
            if media is None:
                media = Media(
                    catalog_id=catalog_id,
                    media_type=media_type,
                    title=title,
                    poster_path=poster_path,
                    release_year=release_year or None,
                )
                db.add(media)
                try:
                    await db.commit()
                except IntegrityError:
                    # Another job inserted the same title first.
                    await db.rollback()
                    media = await self._find_media(db, catalog_id, media_type)
                    if media is None:
                        raise
                return media.id

            media.title = title
            media.poster_path = poster_path
            if release_year:
                media.release_year = release_year
            await db.commit()
            return media.id

    @staticmethod
    async def _find_media(db: AsyncSession, catalog_id: int, media_type: str) -> Media | None:
        return (
            await db.execute(
                select(Media).where(Media.catalog_id == catalog_id, Media.media_type == media_type)
            )
        ).scalar_one_or_none()

    async def set_user_media_status(
        self,
        user_id: uuid.UUID,
        media_id: int,
        status: str,
        rating: float | None = None,
    ) -> int:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as db:
            row = (
                await db.execute(
                    select(UserMedia).where(UserMedia.user_id == user_id, UserMedia.media_id == media_id)
                )
            ).scalar_one_or_none()
            if row is None:
                row = UserMedia(user_id=user_id, media_id=media_id)
                db.add(row)
            row.status = status
            row.status_updated_at = now
            if rating is not None:
                row.rating = rating
            await db.commit()
            return row.id

    async def update_rating(self, user_id: uuid.UUID, media_id: int, rating: float | None) -> bool:
        async with self._session_factory() as db:
            row = (
                await db.execute(
                    select(UserMedia).where(UserMedia.user_id == user_id, UserMedia.media_id == media_id)
                )
            ).scalar_one_or_none()
            if row is None:
                return False
            row.rating = rating
            await db.commit()
            return True

    async def get_system_tag_id(self, slug: str, label: str | None = None) -> int:
        async with self._session_factory() as db:
            tag_id = await self._find_system_tag_id(db, slug)
            if tag_id is not None:
                return tag_id
            tag = Tag(user_id=None, slug=slug, label=label or SYSTEM_TAG_LABELS.get(slug, slug.title()), kind="system")
            db.add(tag)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                tag_id = await self._find_system_tag_id(db, slug)
                if tag_id is None:
                    raise
                return tag_id
            return tag.id

    @staticmethod
    async def _find_system_tag_id(db: AsyncSession, slug: str) -> int | None:
        return await db.scalar(select(Tag.id).where(Tag.slug == slug, Tag.user_id.is_(None)))

    async def attach_system_tag(self, user_media_id: int, tag_key: str) -> None:
        tag_id = await self.get_system_tag_id(tag_key)
        async with self._session_factory() as db:
            existing = await db.scalar(
                select(UserMediaTag.id).where(
                    UserMediaTag.user_media_id == user_media_id,
                    UserMediaTag.tag_id == tag_id,
                )
            )
            if existing is not None:
                return
            db.add(UserMediaTag(user_media_id=user_media_id, tag_id=tag_id))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
