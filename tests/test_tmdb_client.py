"""Tests for the TMDB API client."""

from __future__ import annotations

from datetime import date
from typing import Any, cast

import httpx
import pytest

from app.config import Settings
from app.db_models import TitleKind
from app.errors import CatalogServiceError
from app.services.tmdb import TMDBClient


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {"TMDB_TOKEN": "tmdb-token", "TMDB_RATE_LIMIT": 1000}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def test_client_requires_token() -> None:
    with pytest.raises(ValueError, match="TMDB token is required"):
        TMDBClient(Settings(_env_file=None), cast(httpx.AsyncClient, object()))


@pytest.mark.anyio("asyncio")
async def test_find_prefers_movie_results_and_sends_bearer_token() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "movie_results": [
                    {"id": 278, "title": "The Shawshank Redemption", "poster_path": "/p.jpg"}
                ],
                "tv_results": [{"id": 1, "name": "Ignored"}],
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://api.example.com/3"
    ) as http_client:
        client = TMDBClient(build_settings(), http_client)
        match = await client.find_by_imdb_id("tt0111161")

    assert match is not None
    assert match.tmdb_id == 278
    assert match.kind is TitleKind.MOVIE
    assert match.poster_path == "/p.jpg"
    assert requests[0].url.path == "/3/find/tt0111161"
    assert requests[0].url.params["external_source"] == "imdb_id"
    assert requests[0].headers["Authorization"] == "Bearer tmdb-token"


@pytest.mark.anyio("asyncio")
async def test_find_falls_back_to_tv_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"movie_results": [], "tv_results": [{"id": 1396, "name": "Breaking Bad"}]}
        )

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/3"
    ) as http_client:
        match = await TMDBClient(build_settings(), http_client).find_by_imdb_id("tt0903747")

    assert match is not None
    assert match.kind is TitleKind.SERIES
    assert match.title == "Breaking Bad"


@pytest.mark.anyio("asyncio")
async def test_find_treats_failures_as_misses() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/3"
    ) as http_client:
        match = await TMDBClient(build_settings(), http_client).find_by_imdb_id("tt1")

    assert match is None


@pytest.mark.anyio("asyncio")
async def test_series_details_include_episode_data() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/tv/1396"
        return httpx.Response(
            200,
            json={
                "status": "Returning Series",
                "episode_run_time": [47],
                "number_of_seasons": 5,
                "number_of_episodes": 62,
                "next_episode_to_air": {"air_date": "2030-01-05"},
                "production_countries": [{"iso_3166_1": "US", "name": "United States"}],
                "production_companies": [{"id": 11073, "name": "Sony Pictures Television"}],
            },
        )

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/3"
    ) as http_client:
        details = await TMDBClient(build_settings(), http_client).get_details(
            1396, TitleKind.SERIES
        )

    assert details.status == "Returning Series"
    assert details.runtime == 47
    assert details.number_of_episodes == 62
    assert details.next_episode_air_date == date(2030, 1, 5)
    assert details.countries == ["US"]
    assert details.companies == ["Sony Pictures Television"]


@pytest.mark.anyio("asyncio")
async def test_details_raise_on_http_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status_message": "not found"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/3"
    ) as http_client:
        client = TMDBClient(build_settings(), http_client)
        with pytest.raises(CatalogServiceError, match="404"):
            await client.get_details(1, "movie")


@pytest.mark.anyio("asyncio")
async def test_credits_expose_directors_and_top_actors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/movie/278/credits"
        cast_members = [
            {"id": 100 + index, "name": f"Actor {index}", "order": 9 - index}
            for index in range(10)
        ]
        crew = [
            {"id": 4027, "name": "Frank Darabont", "job": "Director"},
            {"id": 5000, "name": "Someone Else", "job": "Producer"},
        ]
        return httpx.Response(200, json={"cast": cast_members, "crew": crew})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/3"
    ) as http_client:
        credits = await TMDBClient(build_settings(), http_client).get_credits(278, "movie")

    assert [member.name for member in credits.directors()] == ["Frank Darabont"]
    top = credits.top_actors(7)
    assert len(top) == 7
    assert [member.order for member in top] == [0, 1, 2, 3, 4, 5, 6]


@pytest.mark.anyio("asyncio")
async def test_aggregate_credits_read_nested_jobs() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/tv/1396/aggregate_credits"
        return httpx.Response(
            200,
            json={
                "cast": [{"id": 17419, "name": "Bryan Cranston", "order": 0}],
                "crew": [
                    {"id": 66633, "name": "Vince Gilligan", "jobs": [{"job": "Director"}]}
                ],
            },
        )

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/3"
    ) as http_client:
        credits = await TMDBClient(build_settings(), http_client).get_credits(
            1396, TitleKind.SERIES
        )

    assert [member.tmdb_id for member in credits.directors()] == [66633]


@pytest.mark.anyio("asyncio")
async def test_person_returns_imdb_cross_reference() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": 17419, "imdb_id": "nm0186505"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/3"
    ) as http_client:
        person = await TMDBClient(build_settings(), http_client).get_person(17419)

    assert person.imdb_id == "nm0186505"
