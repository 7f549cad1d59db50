"""User-facing list management."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import ListItem, ListRecord, ListStatus
from ..errors import FileNotFound, ListNotFound
from ..models import ListSummary, Page, PageQuery
from .files import FileService
from .list_processor import ImportWorkerPool

logger = logging.getLogger(__name__)


class ListService:
    """Creates lists, schedules their import and manages their lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        file_service: FileService,
        workers: ImportWorkerPool,
    ):
        self._session_factory = session_factory
        self._files = file_service
        self._workers = workers

    async def create(self, name: str, file_id: str, user_id: str) -> ListSummary:
        """Create a list in PROCESSING state and queue its import.

        Returns immediately; the import outcome is recorded on the list.
        """

        await self._files.find_owned(file_id, user_id)
        record = ListRecord(
            name=name,
            file_id=file_id,
            user_id=user_id,
            status=ListStatus.PROCESSING.value,
            total_items=0,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        self._workers.enqueue(record.id)
        logger.info("Queued import of list %s for user %s", record.id, user_id)
        return ListSummary.model_validate(record)

    async def resume_pending(self) -> list[str]:
        """Queue again every list left PROCESSING by a previous run."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(ListRecord.id)
                .where(ListRecord.status == ListStatus.PROCESSING.value)
                .order_by(ListRecord.created_at)
            )
            list_ids = list(result.scalars().all())
        for list_id in list_ids:
            self._workers.enqueue(list_id)
        if list_ids:
            logger.info("Resumed %s interrupted list import(s)", len(list_ids))
        return list_ids

    async def find_all(
        self, user_id: str, query: PageQuery, *, name: str | None = None
    ) -> Page[ListSummary]:
        conditions = [ListRecord.user_id == user_id]
        if name:
            conditions.append(ListRecord.name.ilike(f"%{name}%"))
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count(ListRecord.id)).where(*conditions)
            )
            result = await session.execute(
                select(ListRecord)
                .where(*conditions)
                .order_by(ListRecord.created_at.desc())
                .offset(query.offset)
                .limit(query.limit)
            )
            records = result.scalars().all()
        return Page[ListSummary].build(
            [ListSummary.model_validate(record) for record in records],
            query,
            int(total or 0),
        )

    async def find_one(self, list_id: str, user_id: str) -> ListRecord:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ListRecord).where(
                    ListRecord.id == list_id, ListRecord.user_id == user_id
                )
            )
            record = result.scalar_one_or_none()
        if record is None:
            raise ListNotFound(list_id)
        return record

    async def rename(self, list_id: str, user_id: str, name: str) -> ListSummary:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ListRecord).where(
                    ListRecord.id == list_id, ListRecord.user_id == user_id
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                raise ListNotFound(list_id)
            record.name = name
            await session.commit()
        return ListSummary.model_validate(record)

    async def delete(self, list_id: str, user_id: str) -> None:
        """Delete a list, its items and its source file.

        Titles and people are shared and stay in place; the orphan sweep
        removes them once nothing references them.
        """

        record = await self.find_one(list_id, user_id)
        async with self._session_factory() as session:
            await session.execute(delete(ListItem).where(ListItem.list_id == list_id))
            await session.execute(delete(ListRecord).where(ListRecord.id == list_id))
            await session.commit()
        try:
            await self._files.delete(record.file_id)
        except FileNotFound:
            logger.warning(
                "File %s of list %s was already removed", record.file_id, list_id
            )
        logger.info("Deleted list %s", list_id)
