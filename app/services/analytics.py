"""Read-only aggregations over a completed list."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, timedelta
from typing import Iterable

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import (
    ListItem,
    ListRecord,
    ListStatus,
    Person,
    PersonRole,
    Title,
    TitleKind,
    TitlePerson,
)
from ..errors import ListNotFound, NotReady, ProcessingFailed
from ..models import (
    Page,
    PageQuery,
    PersonStat,
    RuntimeStats,
    TitleSummary,
    UpcomingTitle,
)

logger = logging.getLogger(__name__)

RATING_SCALE: tuple[int, ...] = tuple(range(1, 11))
COMPANY_STATS_LIMIT = 40
UPCOMING_WINDOW_DAYS = 365


def _ranked(counter: Counter[str], limit: int | None = None) -> dict[str, int]:
    """Order counts descending, ties by key, optionally keeping the top ``limit``."""

    ordered = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ordered = ordered[:limit]
    return dict(ordered)


class AnalyticsService:
    """Grouped counts and listings over a list's titles and people.

    Every query first checks that the caller owns the list and that its
    import has completed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _require_completed(self, list_id: str, user_id: str) -> ListRecord:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ListRecord).where(
                    ListRecord.id == list_id, ListRecord.user_id == user_id
                )
            )
            record = result.scalar_one_or_none()
        if record is None:
            raise ListNotFound(list_id)
        if record.status == ListStatus.PROCESSING.value:
            raise NotReady()
        if record.status != ListStatus.COMPLETED.value:
            raise ProcessingFailed(record.error_message)
        return record

    async def _count_values(self, list_id: str, column) -> Counter[str]:
        """Count every element of a JSON list column across the list's titles."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(column)
                .join(ListItem, ListItem.title_id == Title.id)
                .where(ListItem.list_id == list_id)
            )
            values: Iterable[list[str] | None] = result.scalars().all()
        counter: Counter[str] = Counter()
        for entries in values:
            counter.update(entries or [])
        return counter

    async def genre_stats(self, list_id: str, user_id: str) -> dict[str, int]:
        await self._require_completed(list_id, user_id)
        return _ranked(await self._count_values(list_id, Title.genres))

    async def country_stats(self, list_id: str, user_id: str) -> dict[str, int]:
        await self._require_completed(list_id, user_id)
        return _ranked(await self._count_values(list_id, Title.countries))

    async def company_stats(self, list_id: str, user_id: str) -> dict[str, int]:
        await self._require_completed(list_id, user_id)
        return _ranked(
            await self._count_values(list_id, Title.companies),
            limit=COMPANY_STATS_LIMIT,
        )

    async def genres(self, list_id: str, user_id: str) -> list[str]:
        """Return the distinct genres present in the list, sorted."""

        await self._require_completed(list_id, user_id)
        return sorted(await self._count_values(list_id, Title.genres))

    async def kind_stats(self, list_id: str, user_id: str) -> dict[str, int]:
        await self._require_completed(list_id, user_id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Title.kind, func.count())
                .select_from(ListItem)
                .join(Title, ListItem.title_id == Title.id)
                .where(ListItem.list_id == list_id)
                .group_by(Title.kind)
            )
            return {kind: int(count) for kind, count in result.all()}

    async def rating_stats(
        self,
        list_id: str,
        user_id: str,
        *,
        genre: str | None = None,
        year: int | None = None,
        kind: TitleKind | None = None,
    ) -> dict[int, int]:
        """Histogram of personal ratings with every key from 1 to 10."""

        await self._require_completed(list_id, user_id)
        conditions = [ListItem.list_id == list_id, ListItem.rating.is_not(None)]
        if year is not None:
            conditions.append(Title.year == year)
        if kind is not None:
            conditions.append(Title.kind == TitleKind(kind).value)
        async with self._session_factory() as session:
            result = await session.execute(
                select(ListItem.rating, Title.genres)
                .join(Title, ListItem.title_id == Title.id)
                .where(*conditions)
            )
            rows = result.all()

        stats = {rating: 0 for rating in RATING_SCALE}
        for rating, genres in rows:
            if genre is not None and genre not in (genres or []):
                continue
            if rating in stats:
                stats[rating] += 1
        return stats

    async def year_stats(self, list_id: str, user_id: str) -> dict[int, int]:
        await self._require_completed(list_id, user_id)
        async with self._session_factory() as session:
            count = func.count().label("total")
            result = await session.execute(
                select(Title.year, count)
                .select_from(ListItem)
                .join(Title, ListItem.title_id == Title.id)
                .where(ListItem.list_id == list_id, Title.year.is_not(None))
                .group_by(Title.year)
                .order_by(count.desc(), Title.year)
            )
            return {int(year): int(total) for year, total in result.all()}

    async def years(self, list_id: str, user_id: str) -> list[int]:
        await self._require_completed(list_id, user_id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Title.year)
                .distinct()
                .select_from(ListItem)
                .join(Title, ListItem.title_id == Title.id)
                .where(ListItem.list_id == list_id, Title.year.is_not(None))
                .order_by(Title.year)
            )
            return [int(year) for year in result.scalars().all()]

    async def runtime_stats(self, list_id: str, user_id: str) -> RuntimeStats:
        """Total minutes watched; series count runtime once per episode."""

        await self._require_completed(list_id, user_id)
        base = (
            select(func.count())
            .select_from(ListItem)
            .join(Title, ListItem.title_id == Title.id)
            .where(ListItem.list_id == list_id)
        )
        async with self._session_factory() as session:
            total = await session.scalar(base)
            movies = await session.scalar(
                base.with_only_columns(func.sum(Title.runtime)).where(
                    Title.kind == TitleKind.MOVIE.value
                )
            )
            series = await session.scalar(
                base.with_only_columns(
                    func.sum(Title.runtime * Title.number_of_episodes)
                ).where(Title.kind == TitleKind.SERIES.value)
            )
        movies_runtime = int(movies or 0)
        series_runtime = int(series or 0)
        return RuntimeStats(
            total=int(total or 0),
            movies_runtime=movies_runtime,
            series_runtime=series_runtime,
            total_runtime=movies_runtime + series_runtime,
        )

    async def person_stats(
        self, list_id: str, user_id: str, role: PersonRole, query: PageQuery
    ) -> Page[PersonStat]:
        """People ranked by how many of the list's titles they appear in."""

        await self._require_completed(list_id, user_id)
        role_value = PersonRole(role).value
        conditions = (ListItem.list_id == list_id, TitlePerson.role == role_value)
        item_count = func.count(distinct(TitlePerson.title_id)).label("item_count")

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count(distinct(TitlePerson.person_id)))
                .select_from(TitlePerson)
                .join(ListItem, ListItem.title_id == TitlePerson.title_id)
                .where(*conditions)
            )
            result = await session.execute(
                select(
                    Person.id,
                    Person.tmdb_id,
                    Person.name,
                    Person.profile_path,
                    item_count,
                )
                .select_from(TitlePerson)
                .join(Person, Person.id == TitlePerson.person_id)
                .join(ListItem, ListItem.title_id == TitlePerson.title_id)
                .where(*conditions)
                .group_by(Person.id, Person.tmdb_id, Person.name, Person.profile_path)
                .order_by(item_count.desc(), Person.name.asc())
                .offset(query.offset)
                .limit(query.limit)
            )
            ranked = result.all()

            titles_by_person: dict[int, list[str]] = {row.id: [] for row in ranked}
            if titles_by_person:
                title_rows = await session.execute(
                    select(TitlePerson.person_id, Title.title)
                    .join(Title, Title.id == TitlePerson.title_id)
                    .join(ListItem, ListItem.title_id == Title.id)
                    .where(
                        *conditions,
                        TitlePerson.person_id.in_(list(titles_by_person)),
                    )
                    .order_by(Title.title)
                )
                for person_id, title in title_rows.all():
                    if title not in titles_by_person[person_id]:
                        titles_by_person[person_id].append(title)

        results = [
            PersonStat(
                tmdb_id=row.tmdb_id,
                name=row.name,
                profile_path=row.profile_path,
                item_count=int(row.item_count),
                titles=titles_by_person[row.id],
            )
            for row in ranked
        ]
        return Page[PersonStat].build(results, query, int(total or 0))

    async def titles(
        self, list_id: str, user_id: str, query: PageQuery
    ) -> Page[TitleSummary]:
        """The list's titles, most recently imported position first."""

        await self._require_completed(list_id, user_id)
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count(ListItem.id)).where(ListItem.list_id == list_id)
            )
            result = await session.execute(
                select(Title)
                .join(ListItem, ListItem.title_id == Title.id)
                .where(ListItem.list_id == list_id)
                .order_by(ListItem.position.desc())
                .offset(query.offset)
                .limit(query.limit)
            )
            records = result.scalars().all()
        return Page[TitleSummary].build(
            [TitleSummary.model_validate(record) for record in records],
            query,
            int(total or 0),
        )

    async def upcoming_series(
        self,
        list_id: str,
        user_id: str,
        query: PageQuery,
        *,
        today: date | None = None,
    ) -> Page[UpcomingTitle]:
        """Series in the list with a next episode due within a year."""

        await self._require_completed(list_id, user_id)
        start = today or date.today()
        end = start + timedelta(days=UPCOMING_WINDOW_DAYS)
        conditions = (
            ListItem.list_id == list_id,
            Title.kind == TitleKind.SERIES.value,
            Title.next_episode_air_date.is_not(None),
            Title.next_episode_air_date.between(start, end),
        )
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(ListItem)
                .join(Title, ListItem.title_id == Title.id)
                .where(*conditions)
            )
            result = await session.execute(
                select(Title)
                .join(ListItem, ListItem.title_id == Title.id)
                .where(*conditions)
                .order_by(Title.next_episode_air_date.asc(), Title.title)
                .offset(query.offset)
                .limit(query.limit)
            )
            records = result.scalars().all()
        results = [
            UpcomingTitle(
                external_id=record.external_id,
                tmdb_id=record.tmdb_id,
                title=record.title,
                poster_path=record.poster_path,
                next_episode_air_date=record.next_episode_air_date,
            )
            for record in records
        ]
        return Page[UpcomingTitle].build(results, query, int(total or 0))
