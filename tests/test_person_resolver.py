"""Tests for person de-duplication and title linking."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from app.database import insert_ignore
from app.db_models import Person, PersonRole, Title, TitlePerson
from app.services.persons import PersonResolver
from app.services.tmdb import CreditMember


async def _create_title(database, external_id: str = "tt1") -> int:
    async with database.session_factory() as session:
        await insert_ignore(
            session,
            Title,
            {"external_id": external_id, "title": "Sample", "kind": "movie", "genres": []},
            conflict_columns=("external_id",),
        )
        await session.commit()
        return await session.scalar(
            select(Title.id).where(Title.external_id == external_id)
        )


@pytest.mark.anyio("asyncio")
async def test_link_creates_person_with_imdb_cross_reference(database, fake_tmdb) -> None:
    title_id = await _create_title(database)
    fake_tmdb.person_imdb_ids[17419] = "nm0186505"
    resolver = PersonResolver(database.session_factory, fake_tmdb)

    outcome = await resolver.link(
        title_id, CreditMember(tmdb_id=17419, name="Bryan Cranston"), PersonRole.ACTOR
    )

    assert outcome.ok
    async with database.session_factory() as session:
        person = (await session.execute(select(Person))).scalar_one()
        link = (await session.execute(select(TitlePerson))).scalar_one()
    assert person.imdb_id == "nm0186505"
    assert (link.title_id, link.person_id, link.role) == (title_id, person.id, "actor")


@pytest.mark.anyio("asyncio")
async def test_concurrent_links_of_one_person_create_one_row(database, fake_tmdb) -> None:
    first = await _create_title(database, "tt1")
    second = await _create_title(database, "tt2")
    resolver = PersonResolver(database.session_factory, fake_tmdb)
    member = CreditMember(tmdb_id=500, name="Shared Actor")

    outcomes = await asyncio.gather(
        resolver.link(first, member, PersonRole.ACTOR),
        resolver.link(second, member, PersonRole.ACTOR),
        resolver.link(first, member, PersonRole.ACTOR),
    )

    assert all(outcome.ok for outcome in outcomes)
    async with database.session_factory() as session:
        persons = await session.scalar(select(func.count(Person.id)))
        links = await session.scalar(select(func.count(TitlePerson.id)))
    assert persons == 1
    assert links == 2


@pytest.mark.anyio("asyncio")
async def test_same_person_may_hold_two_roles(database, fake_tmdb) -> None:
    title_id = await _create_title(database)
    resolver = PersonResolver(database.session_factory, fake_tmdb)
    member = CreditMember(tmdb_id=7, name="Actor Director")

    await resolver.link(title_id, member, PersonRole.ACTOR)
    await resolver.link(title_id, member, PersonRole.DIRECTOR)

    async with database.session_factory() as session:
        roles = (await session.execute(select(TitlePerson.role))).scalars().all()
    assert sorted(roles) == ["actor", "director"]


@pytest.mark.anyio("asyncio")
async def test_cross_reference_failure_still_links_person(database, fake_tmdb) -> None:
    title_id = await _create_title(database)
    fake_tmdb.failing_people.add(99)
    resolver = PersonResolver(database.session_factory, fake_tmdb)

    outcome = await resolver.link(
        title_id, CreditMember(tmdb_id=99, name="No Cross Ref"), PersonRole.DIRECTOR
    )

    assert outcome.ok
    async with database.session_factory() as session:
        person = (await session.execute(select(Person))).scalar_one()
    assert person.imdb_id is None


@pytest.mark.anyio("asyncio")
async def test_link_failures_are_reported_not_raised(database) -> None:
    resolver = PersonResolver(database.session_factory, None)

    # Title 404 does not exist, so the link violates its foreign key.
    outcomes = await resolver.link_all(
        404,
        [CreditMember(tmdb_id=1, name="A"), CreditMember(tmdb_id=2, name="B")],
        PersonRole.ACTOR,
    )

    assert len(outcomes) == 2
    assert not any(outcome.ok for outcome in outcomes)
