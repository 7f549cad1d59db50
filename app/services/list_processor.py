"""Background import of uploaded lists."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import ListItem, ListRecord, ListStatus
from ..models import ImportRow
from ..utils import utcnow
from .csv_parser import parse_and_validate
from .files import FileService
from .titles import TitleResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RowOutcome:
    """Result of importing one validated row."""

    position: int
    external_id: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ImportReport:
    """Aggregated row outcomes for one list import."""

    list_id: str
    total: int = 0
    outcomes: list[RowOutcome] = field(default_factory=list)

    @property
    def linked(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def skipped(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)


class ListVanished(Exception):
    """The list was deleted while it was being imported."""


class ListProcessor:
    """Drives one list from PROCESSING to COMPLETED or FAILED."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        file_service: FileService,
        title_resolver: TitleResolver,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._files = file_service
        self._titles = title_resolver

    async def process(self, list_id: str) -> ImportReport | None:
        """Import the list's file; returns ``None`` if the list disappeared."""

        list_record = await self._load_list(list_id)
        if list_record is None:
            logger.info("List %s no longer exists, skipping import", list_id)
            return None

        try:
            content = await self._files.download(list_record.file_id)
            rows = parse_and_validate(content, ImportRow)
        except Exception as exc:
            logger.error("Error processing list %s: %s", list_id, exc)
            await self._mark_failed(list_id, str(exc) or type(exc).__name__)
            return ImportReport(list_id=list_id)

        report = ImportReport(list_id=list_id, total=len(rows))
        try:
            await self._set_total_items(list_id, len(rows))
            await self._clear_items(list_id)
            await self._import_rows(list_id, rows, report)
        except ListVanished:
            logger.info("List %s was deleted during import, stopping", list_id)
            return None
        except Exception as exc:
            logger.exception("Error processing list %s", list_id)
            await self._mark_failed(list_id, str(exc) or type(exc).__name__)
            return report

        await self._mark_completed(list_id)
        logger.info(
            "List %s processing completed: %s linked, %s skipped of %s",
            list_id,
            report.linked,
            report.skipped,
            report.total,
        )
        return report

    async def _import_rows(
        self, list_id: str, rows: list[ImportRow], report: ImportReport
    ) -> None:
        batch_size = self._settings.import_batch_size
        for start in range(0, len(rows), batch_size):
            if await self._load_list(list_id) is None:
                raise ListVanished(list_id)
            batch = rows[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(
                    self._import_row(list_id, row, start + offset)
                    for offset, row in enumerate(batch)
                )
            )
            report.outcomes.extend(outcomes)
            logger.info(
                "List %s: processed %s/%s items",
                list_id,
                min(start + batch_size, len(rows)),
                len(rows),
            )

    async def _import_row(self, list_id: str, row: ImportRow, position: int) -> RowOutcome:
        """Resolve one row and attach it to the list; never raises."""

        try:
            title = await self._titles.resolve(row)
            async with self._session_factory() as session:
                session.add(
                    ListItem(
                        list_id=list_id,
                        title_id=title.id,
                        rating=row.your_rating,
                        rated_on=row.date_rated,
                        position=position,
                    )
                )
                await session.commit()
        except Exception as exc:
            logger.exception("Error processing media item %s", row.const)
            return RowOutcome(position, row.const, error=str(exc) or type(exc).__name__)
        return RowOutcome(position, row.const)

    async def _load_list(self, list_id: str) -> ListRecord | None:
        async with self._session_factory() as session:
            return await session.get(ListRecord, list_id)

    async def _set_total_items(self, list_id: str, total: int) -> None:
        updated = await self._update_list(list_id, total_items=total)
        if not updated:
            raise ListVanished(list_id)

    async def _clear_items(self, list_id: str) -> None:
        """Drop items left behind by an import that was interrupted."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(ListItem).where(ListItem.list_id == list_id)
            )
            await session.commit()
        if result.rowcount:
            logger.info(
                "Removed %s item(s) of an interrupted import of list %s",
                result.rowcount,
                list_id,
            )

    async def _mark_completed(self, list_id: str) -> None:
        await self._update_list(list_id, status=ListStatus.COMPLETED.value)

    async def _mark_failed(self, list_id: str, message: str) -> None:
        await self._update_list(
            list_id, status=ListStatus.FAILED.value, error_message=message
        )

    async def _update_list(self, list_id: str, **values: object) -> bool:
        """Targeted column update; returns whether the list still exists."""

        async with self._session_factory() as session:
            result = await session.execute(
                update(ListRecord)
                .where(ListRecord.id == list_id)
                .values(updated_at=utcnow(), **values)
            )
            await session.commit()
        return bool(result.rowcount)


class ImportWorkerPool:
    """Queue of list ids consumed by a fixed number of import workers."""

    def __init__(self, processor: ListProcessor, *, workers: int = 1):
        self._processor = processor
        self._worker_count = max(1, workers)
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._run(index), name=f"list-import-{index}")
            for index in range(self._worker_count)
        ]

    async def stop(self) -> None:
        """Cancel the workers.

        Queued and in-flight imports stay PROCESSING and are picked up again by
        :meth:`ListService.resume_pending` on the next start.
        """

        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        for task in workers:
            with suppress(asyncio.CancelledError):
                await task

    def enqueue(self, list_id: str) -> None:
        """Schedule an import without waiting for it."""

        self._queue.put_nowait(list_id)

    async def join(self) -> None:
        """Wait until every queued import has finished."""

        await self._queue.join()

    async def _run(self, index: int) -> None:
        while True:
            list_id = await self._queue.get()
            try:
                await self._processor.process(list_id)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception(
                    "Import worker %s failed on list %s: %s", index, list_id, exc
                )
            finally:
                self._queue.task_done()
