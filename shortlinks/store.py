"""Durable store adapter for short URLs and their clicks.

Every method is a complete unit of work against the database: it commits on
success and rolls back on failure, so the service layer never has to reason
about half-applied writes.

Flow Diagram: increment_click_and_insert_click()
=================================================
::
    ┌──────────────────────────┐
    │ UPDATE short_urls        │
    │ SET click_count += 1     │
    │ WHERE short_code = :code │
    │ RETURNING id             │
    └────────────┬─────────────┘
          ROW?   │
    ┌────────────┴────────────┐
    │ NO                      │ YES
    ▼                         ▼
┌──────────┐          ┌───────────────┐
│ ROLLBACK │          │ INSERT clicks │
│ → False  │          │ COMMIT → True │
└──────────┘          └───────────────┘

The increment happens inside the database, so concurrent clicks never lose
updates, and a click racing a committed delete updates zero rows and stops.

Classes:
    URLStore:  Typed operations over one ``AsyncSession``.
"""

import logging
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.exceptions import ConflictError, NotFoundError
from shortlinks.models import Click, ShortUrl
from shortlinks.schemas import ClickMetadata

__all__ = ["URLStore"]


class URLStore:
    def __init__(self, session: AsyncSession, logger: Optional[logging.Logger] = None) -> None:
        self._session = session
        self._logger = logger or logging.getLogger("shortlinks")

    async def find_by_code(self, short_code: str) -> Optional[ShortUrl]:
        result = await self._session.execute(
            select(ShortUrl)
            .where(ShortUrl.short_code == short_code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def exists(self, short_code: str) -> bool:
        result = await self._session.execute(
            select(func.count()).select_from(ShortUrl).where(ShortUrl.short_code == short_code)
        )
        return result.scalar_one() > 0

    async def create(self, url: ShortUrl) -> ShortUrl:
        """Insert a new mapping.

        Raises:
            ConflictError: The short code is already taken. The unique
                constraint is the authority here, not any earlier lookup.
        """
        try:
            self._session.add(url)
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            self._logger.warning(f"Unique constraint hit for code: {url.short_code}")
            raise ConflictError(f'Short code "{url.short_code}" is already taken') from exc
        await self._session.refresh(url)
        return url

    async def increment_click_and_insert_click(self, short_code: str, metadata: ClickMetadata) -> bool:
        """Bump ``click_count`` and append a click row in one transaction.

        Returns:
            bool: False when the code does not exist (nothing is written).
        """
        try:
            result = await self._session.execute(
                update(ShortUrl)
                .where(ShortUrl.short_code == short_code)
                .values(click_count=ShortUrl.click_count + 1)
                .returning(ShortUrl.id)
                .execution_options(synchronize_session=False)
            )
            url_id = result.scalar_one_or_none()
            if url_id is None:
                await self._session.rollback()
                return False

            self._session.add(
                Click(
                    url_id=url_id,
                    user_agent=metadata.user_agent,
                    referer=metadata.referer,
                    ip_address=metadata.ip_address,
                )
            )
            await self._session.commit()
            return True
        except Exception:
            await self._session.rollback()
            raise

    async def delete(self, short_code: str) -> None:
        """Remove a mapping together with its clicks.

        Raises:
            NotFoundError: Nothing was stored under ``short_code``.
        """
        url_id = select(ShortUrl.id).where(ShortUrl.short_code == short_code).scalar_subquery()
        try:
            await self._session.execute(
                delete(Click).where(Click.url_id == url_id).execution_options(synchronize_session=False)
            )
            result = await self._session.execute(
                delete(ShortUrl)
                .where(ShortUrl.short_code == short_code)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self._session.rollback()
                raise NotFoundError(f'Short URL "{short_code}" not found')
            await self._session.commit()
        except NotFoundError:
            raise
        except Exception:
            await self._session.rollback()
            raise

    async def recent_clicks(self, url_id: int, limit: int = 10) -> list[Click]:
        result = await self._session.execute(
            select(Click)
            .where(Click.url_id == url_id)
            .order_by(Click.clicked_at.desc(), Click.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_owner(self, owner_id: str) -> list[ShortUrl]:
        result = await self._session.execute(
            select(ShortUrl)
            .where(ShortUrl.owner_id == owner_id)
            .order_by(ShortUrl.created_at.desc(), ShortUrl.id.desc())
        )
        return list(result.scalars().all())

    async def list_all(self, owner_id: Optional[str] = None, skip: int = 0, take: int = 20) -> list[ShortUrl]:
        query = select(ShortUrl)
        if owner_id is not None:
            query = query.where(ShortUrl.owner_id == owner_id)
        query = query.order_by(ShortUrl.created_at.desc(), ShortUrl.id.desc()).offset(skip).limit(take)
        result = await self._session.execute(query)
        return list(result.scalars().all())
