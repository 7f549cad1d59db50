"""Resolve cast and crew into shared person rows linked to titles."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import insert_ignore
from ..db_models import Person, PersonRole, TitlePerson
from .tmdb import CreditMember, TMDBClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LinkOutcome:
    """Result of linking one person to one title."""

    person_tmdb_id: int
    role: PersonRole
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PersonResolver:
    """De-duplicates people by TMDB id and links them to titles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb_client: TMDBClient | None,
    ):
        self._session_factory = session_factory
        self._tmdb = tmdb_client

    async def link(
        self, title_id: int, person: CreditMember, role: PersonRole
    ) -> LinkOutcome:
        """Ensure ``person`` exists and is linked to ``title_id`` under ``role``.

        Never raises: failures are logged and reported on the outcome so the
        caller can keep linking the remaining people.
        """

        try:
            imdb_id = await self._fetch_imdb_id(person.tmdb_id)
            async with self._session_factory() as session:
                person_id = await self._upsert_person(session, person, imdb_id)
                await self._ensure_link(session, title_id, person_id, role)
                await session.commit()
        except Exception as exc:
            logger.exception(
                "Error saving person %s for title %s", person.tmdb_id, title_id
            )
            return LinkOutcome(person.tmdb_id, role, error=str(exc) or type(exc).__name__)
        return LinkOutcome(person.tmdb_id, role)

    async def link_all(
        self, title_id: int, people: Sequence[CreditMember], role: PersonRole
    ) -> list[LinkOutcome]:
        """Link many people concurrently and return every outcome."""

        if not people:
            return []
        outcomes = await asyncio.gather(
            *(self.link(title_id, person, role) for person in people)
        )
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        if failed:
            logger.warning(
                "Linked %s/%s %s(s) to title %s",
                len(outcomes) - failed,
                len(outcomes),
                role.value,
                title_id,
            )
        return list(outcomes)

    async def _fetch_imdb_id(self, person_tmdb_id: int) -> str | None:
        if self._tmdb is None:
            return None
        try:
            details = await self._tmdb.get_person(person_tmdb_id)
        except Exception as exc:
            logger.warning(
                "Could not fetch cross reference for person %s: %s", person_tmdb_id, exc
            )
            return None
        return details.imdb_id

    @staticmethod
    async def _upsert_person(
        session: AsyncSession, person: CreditMember, imdb_id: str | None
    ) -> int:
        await insert_ignore(
            session,
            Person,
            {
                "tmdb_id": person.tmdb_id,
                "name": person.name,
                "profile_path": person.profile_path,
                "imdb_id": imdb_id,
            },
            conflict_columns=("tmdb_id",),
        )
        result = await session.execute(
            select(Person.id).where(Person.tmdb_id == person.tmdb_id)
        )
        person_id = result.scalar_one_or_none()
        if person_id is None:
            raise LookupError(f"Person {person.tmdb_id} not found")
        return person_id

    @staticmethod
    async def _ensure_link(
        session: AsyncSession, title_id: int, person_id: int, role: PersonRole
    ) -> None:
        existing = await session.execute(
            select(TitlePerson.id).where(
                TitlePerson.title_id == title_id,
                TitlePerson.person_id == person_id,
                TitlePerson.role == role.value,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return
        await insert_ignore(
            session,
            TitlePerson,
            {"title_id": title_id, "person_id": person_id, "role": role.value},
            conflict_columns=("title_id", "person_id", "role"),
        )
