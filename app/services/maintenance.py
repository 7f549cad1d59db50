"""Scheduled catalog upkeep: status refresh and orphan cleanup."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass

from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import ListItem, Person, Title, TitleKind, TitlePerson
from ..utils import utcnow
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

ACTIVE_SERIES_STATUSES: tuple[str, ...] = ("Returning Series", "In Production", "Planned")
ACTIVE_MOVIE_STATUSES: tuple[str, ...] = (
    "Rumored",
    "Planned",
    "In Production",
    "Post Production",
)
REFRESH_BATCH_SIZE = 20


@dataclass(slots=True)
class SweepResult:
    titles: int = 0
    persons: int = 0


class MaintenanceService:
    """Runs the periodic refresh and sweep jobs on a fixed interval."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb_client: TMDBClient | None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._tmdb = tmdb_client
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Launch the maintenance loop."""

        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.maintenance_interval_seconds)
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled maintenance failed: %s", exc)

    async def run_once(self) -> None:
        """Refresh active titles, then sweep orphans; each job fails on its own."""

        try:
            await self.refresh_active_titles()
        except Exception:
            logger.exception("Error refreshing active titles")
        try:
            await self.sweep_orphans()
        except Exception:
            logger.exception("Error cleaning up orphaned titles")

    async def refresh_active_titles(self) -> int:
        """Re-fetch TMDB details for titles whose status can still change."""

        if self._tmdb is None:
            logger.info("TMDB is not configured, skipping active title refresh")
            return 0
        tmdb = self._tmdb
        refreshed = await self._refresh_kind(tmdb, TitleKind.SERIES, ACTIVE_SERIES_STATUSES)
        refreshed += await self._refresh_kind(tmdb, TitleKind.MOVIE, ACTIVE_MOVIE_STATUSES)
        logger.info("Refreshed %s active titles", refreshed)
        return refreshed

    async def _refresh_kind(
        self, tmdb: TMDBClient, kind: TitleKind, statuses: tuple[str, ...]
    ) -> int:
        refreshed = 0
        last_id = 0
        while True:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Title)
                    .where(
                        Title.kind == kind.value,
                        Title.status.in_(statuses),
                        Title.id > last_id,
                    )
                    .order_by(Title.id)
                    .limit(REFRESH_BATCH_SIZE)
                )
                batch = list(result.scalars().all())
            if not batch:
                break
            last_id = batch[-1].id
            logger.info("Refreshing batch of %s %s titles", len(batch), kind.value)
            outcomes = await asyncio.gather(
                *(self._refresh_title(tmdb, title) for title in batch)
            )
            refreshed += sum(1 for ok in outcomes if ok)
            if len(batch) < REFRESH_BATCH_SIZE:
                break
        return refreshed

    async def _refresh_title(self, tmdb: TMDBClient, title: Title) -> bool:
        if title.tmdb_id is None:
            logger.warning("Title %s has no TMDB id, skipping", title.external_id)
            return False
        try:
            details = await tmdb.get_details(title.tmdb_id, title.kind)
            async with self._session_factory() as session:
                record = await session.get(Title, title.id)
                if record is None:
                    return False
                record.status = details.status
                if title.kind == TitleKind.SERIES.value:
                    record.number_of_seasons = details.number_of_seasons
                    record.number_of_episodes = details.number_of_episodes
                    record.next_episode_air_date = details.next_episode_air_date
                record.last_synced_at = utcnow()
                await session.commit()
        except Exception:
            logger.exception("Error updating title %s (%s)", title.external_id, title.title)
            return False
        logger.debug("Updated title %s: status %s", title.external_id, details.status)
        return True

    async def sweep_orphans(self) -> SweepResult:
        """Delete titles no list references, then persons no title references."""

        async with self._session_factory() as session:
            orphan_titles = select(Title.id).where(
                ~exists().where(ListItem.title_id == Title.id)
            )
            title_ids = list((await session.execute(orphan_titles)).scalars().all())
            if title_ids:
                await session.execute(
                    delete(TitlePerson).where(TitlePerson.title_id.in_(title_ids))
                )
                await session.execute(delete(Title).where(Title.id.in_(title_ids)))

            orphan_persons = select(Person.id).where(
                ~exists().where(TitlePerson.person_id == Person.id)
            )
            person_ids = list((await session.execute(orphan_persons)).scalars().all())
            if person_ids:
                await session.execute(delete(Person).where(Person.id.in_(person_ids)))
            await session.commit()

        result = SweepResult(titles=len(title_ids), persons=len(person_ids))
        logger.info(
            "Deleted %s orphaned titles and %s orphaned persons",
            result.titles,
            result.persons,
        )
        return result
