"""Resolve import rows into shared, enriched title rows."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import insert_ignore
from ..db_models import PersonRole, Title, TitleKind
from ..models import ImportRow
from ..utils import is_series_type, split_list, utcnow
from .persons import PersonResolver
from .tmdb import CatalogMatch, Credits, TMDBClient

logger = logging.getLogger(__name__)


class TitleResolver:
    """Returns the de-duplicated title for an import row, creating it if new."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb_client: TMDBClient | None,
        person_resolver: PersonResolver,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._tmdb = tmdb_client
        self._persons = person_resolver
        self._sleep = sleep

    async def resolve(self, row: ImportRow) -> Title:
        existing = await self._find(row.const)
        if existing is not None:
            # Titles already in the catalog are not re-enriched on import.
            logger.debug("Title %s already exists, reusing", row.const)
            return existing

        values = self._skeleton(row)
        credits: Credits | None = None
        match = await self._tmdb.find_by_imdb_id(row.const) if self._tmdb else None
        if match is not None:
            enriched, credits = await self._enrich(self._tmdb, values, match)
            if enriched and self._settings.tmdb_enrichment_delay:
                await self._sleep(self._settings.tmdb_enrichment_delay)

        title = await self._persist(values)

        if credits is not None:
            await asyncio.gather(
                self._persons.link_all(
                    title.id, credits.directors(), PersonRole.DIRECTOR
                ),
                self._persons.link_all(
                    title.id,
                    credits.top_actors(self._settings.top_actors_limit),
                    PersonRole.ACTOR,
                ),
            )
        return title

    @staticmethod
    def _skeleton(row: ImportRow) -> dict[str, Any]:
        kind = TitleKind.SERIES if is_series_type(row.title_type) else TitleKind.MOVIE
        return {
            "external_id": row.const,
            "title": row.title,
            "kind": kind.value,
            "genres": split_list(row.genres),
            "year": row.year,
            "imdb_rating": row.imdb_rating,
            "runtime": row.runtime_mins,
            "countries": [],
            "companies": [],
            "last_synced_at": utcnow(),
        }

    async def _enrich(
        self, tmdb: TMDBClient, values: dict[str, Any], match: CatalogMatch
    ) -> tuple[bool, Credits | None]:
        """Apply catalog data to ``values``; each sub-lookup fails on its own.

        Returns whether any lookup succeeded along with the credits, if fetched.
        """

        values["kind"] = match.kind.value
        values["tmdb_id"] = match.tmdb_id
        values["poster_path"] = match.poster_path

        enriched = False
        try:
            details = await tmdb.get_details(match.tmdb_id, match.kind)
        except Exception:
            logger.exception(
                "Error getting %s details for %s", match.kind.value, values["external_id"]
            )
        else:
            enriched = True
            values["status"] = details.status
            values["countries"] = details.countries
            values["companies"] = details.companies
            if not values.get("poster_path"):
                values["poster_path"] = details.poster_path
            if values.get("runtime") is None:
                values["runtime"] = details.runtime
            if match.kind is TitleKind.SERIES:
                values["number_of_seasons"] = details.number_of_seasons
                values["number_of_episodes"] = details.number_of_episodes
                values["next_episode_air_date"] = details.next_episode_air_date

        try:
            credits = await tmdb.get_credits(match.tmdb_id, match.kind)
        except Exception:
            logger.exception(
                "Error getting credits for %s", values["external_id"]
            )
            return enriched, None
        return True, credits

    async def _find(self, external_id: str) -> Title | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Title).where(Title.external_id == external_id)
            )
            return result.scalar_one_or_none()

    async def _persist(self, values: dict[str, Any]) -> Title:
        async with self._session_factory() as session:
            created = await insert_ignore(
                session, Title, values, conflict_columns=("external_id",)
            )
            await session.commit()
            result = await session.execute(
                select(Title).where(Title.external_id == values["external_id"])
            )
            title = result.scalar_one()
        if not created:
            logger.info(
                "Title %s was created concurrently, reusing", values["external_id"]
            )
        return title
