"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.db_models import TitleKind  # noqa: E402
from app.errors import CatalogServiceError  # noqa: E402
from app.services.tmdb import (  # noqa: E402
    CatalogMatch,
    Credits,
    PersonDetails,
    TMDBClient,
    TitleDetails,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
async def database(tmp_path: Path):
    """A fresh SQLite database with every table created."""

    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'listlens.db'}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()


class FakeTMDBClient(TMDBClient):
    """In-memory catalog keyed by IMDb id and TMDB id."""

    def __init__(self) -> None:
        # Skip super().__init__ so no HTTP client or token is needed.
        self.matches: dict[str, CatalogMatch] = {}
        self.details: dict[int, TitleDetails] = {}
        self.credits: dict[int, Credits] = {}
        self.person_imdb_ids: dict[int, str] = {}
        self.failing_people: set[int] = set()
        self.failing_credits: set[int] = set()
        self.calls: list[tuple[str, object]] = []

    def add_title(
        self,
        imdb_id: str,
        tmdb_id: int,
        kind: TitleKind = TitleKind.MOVIE,
        *,
        details: TitleDetails | None = None,
        credits: Credits | None = None,
    ) -> None:
        self.matches[imdb_id] = CatalogMatch(tmdb_id=tmdb_id, kind=kind)
        if details is not None:
            self.details[tmdb_id] = details
        if credits is not None:
            self.credits[tmdb_id] = credits

    async def find_by_imdb_id(self, imdb_id: str) -> CatalogMatch | None:  # type: ignore[override]
        self.calls.append(("find", imdb_id))
        return self.matches.get(imdb_id)

    async def get_details(self, tmdb_id: int, kind: TitleKind | str) -> TitleDetails:  # type: ignore[override]
        self.calls.append(("details", tmdb_id))
        if tmdb_id not in self.details:
            raise CatalogServiceError(f"no details for {tmdb_id}")
        return self.details[tmdb_id]

    async def get_credits(self, tmdb_id: int, kind: TitleKind | str) -> Credits:  # type: ignore[override]
        self.calls.append(("credits", tmdb_id))
        if tmdb_id in self.failing_credits:
            raise CatalogServiceError(f"no credits for {tmdb_id}")
        return self.credits.get(tmdb_id, Credits())

    async def get_person(self, person_id: int) -> PersonDetails:  # type: ignore[override]
        self.calls.append(("person", person_id))
        if person_id in self.failing_people:
            raise CatalogServiceError(f"person {person_id} unavailable")
        return PersonDetails(tmdb_id=person_id, imdb_id=self.person_imdb_ids.get(person_id))


@pytest.fixture
def fake_tmdb() -> FakeTMDBClient:
    return FakeTMDBClient()


@pytest.fixture
def app_settings() -> Settings:
    """Settings with a token and no pacing delay."""

    return Settings(
        _env_file=None,
        TMDB_TOKEN="tmdb-token",
        TMDB_ENRICHMENT_DELAY_MS=0,
        IMPORT_BATCH_SIZE=2,
    )  # type: ignore[call-arg]
