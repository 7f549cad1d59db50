"""Client for The Movie Database (TMDB) catalog API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx

from ..config import Settings
from ..db_models import TitleKind
from ..errors import CatalogServiceError
from ..utils import parse_date, parse_int
from .rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CatalogMatch:
    """The TMDB entry an IMDb id maps to."""

    tmdb_id: int
    kind: TitleKind
    title: str | None = None
    poster_path: str | None = None


@dataclass(slots=True)
class TitleDetails:
    """Normalized subset of TMDB movie/TV details."""

    status: str | None = None
    poster_path: str | None = None
    runtime: int | None = None
    countries: list[str] = field(default_factory=list)
    companies: list[str] = field(default_factory=list)
    number_of_seasons: int | None = None
    number_of_episodes: int | None = None
    next_episode_air_date: date | None = None


@dataclass(slots=True)
class CreditMember:
    tmdb_id: int
    name: str
    profile_path: str | None = None
    order: int | None = None
    job: str | None = None


@dataclass(slots=True)
class Credits:
    cast: list[CreditMember] = field(default_factory=list)
    crew: list[CreditMember] = field(default_factory=list)

    def directors(self) -> list[CreditMember]:
        return [member for member in self.crew if member.job == "Director"]

    def top_actors(self, limit: int) -> list[CreditMember]:
        """Return the first ``limit`` actors by billing order."""

        if limit <= 0:
            return []
        ordered = sorted(
            self.cast,
            key=lambda member: member.order if member.order is not None else 0,
        )
        return ordered[:limit]


@dataclass(slots=True)
class PersonDetails:
    tmdb_id: int
    imdb_id: str | None = None


class TMDBClient:
    """Thin wrapper around the TMDB v3 HTTP API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        limiter: AsyncRateLimiter | None = None,
    ):
        if not settings.tmdb_token:
            raise ValueError("TMDB token is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._limiter = limiter or AsyncRateLimiter(
            settings.tmdb_rate_limit, capacity=settings.tmdb_rate_burst
        )

    def _headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "Authorization": f"Bearer {self._settings.tmdb_token}",
            "User-Agent": f"{self._settings.app_name} (listlens)",
        }

    async def _get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        await self._limiter.acquire()
        try:
            response = await self._client.get(
                path, headers=self._headers(), params=params
            )
        except httpx.HTTPError as exc:
            raise CatalogServiceError(
                f"TMDB request {path} failed: {exc.__class__.__name__}"
            ) from exc
        if response.status_code >= 400:
            raise CatalogServiceError(
                f"TMDB request {path} failed: {response.status_code} - {response.text}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise CatalogServiceError(f"TMDB returned invalid JSON for {path}") from exc
        if not isinstance(payload, dict):
            raise CatalogServiceError(f"Unexpected TMDB response structure for {path}")
        return payload

    async def find_by_imdb_id(self, imdb_id: str) -> CatalogMatch | None:
        """Return the TMDB entry for an IMDb id, or ``None`` when unknown.

        A failed lookup is logged and treated like a miss; the title is then
        stored without enrichment.
        """

        try:
            payload = await self._get(
                f"/find/{imdb_id}", params={"external_source": "imdb_id"}
            )
        except CatalogServiceError as exc:
            logger.warning("TMDB lookup for %s failed: %s", imdb_id, exc)
            return None

        movies = payload.get("movie_results") or []
        if movies and isinstance(movies[0], dict) and movies[0].get("id"):
            movie = movies[0]
            return CatalogMatch(
                tmdb_id=int(movie["id"]),
                kind=TitleKind.MOVIE,
                title=movie.get("title"),
                poster_path=movie.get("poster_path"),
            )
        shows = payload.get("tv_results") or []
        if shows and isinstance(shows[0], dict) and shows[0].get("id"):
            show = shows[0]
            return CatalogMatch(
                tmdb_id=int(show["id"]),
                kind=TitleKind.SERIES,
                title=show.get("name"),
                poster_path=show.get("poster_path"),
            )
        return None

    async def get_details(self, tmdb_id: int, kind: TitleKind | str) -> TitleDetails:
        """Fetch movie or TV details; raises :class:`CatalogServiceError`."""

        if TitleKind(kind) is TitleKind.SERIES:
            payload = await self._get(f"/tv/{tmdb_id}")
            runtimes = payload.get("episode_run_time") or []
            next_episode = payload.get("next_episode_to_air") or {}
            return TitleDetails(
                status=payload.get("status"),
                poster_path=payload.get("poster_path"),
                runtime=parse_int(runtimes[0]) if runtimes else None,
                countries=self._country_codes(payload),
                companies=self._company_names(payload),
                number_of_seasons=parse_int(payload.get("number_of_seasons")),
                number_of_episodes=parse_int(payload.get("number_of_episodes")),
                next_episode_air_date=parse_date(
                    next_episode.get("air_date")
                    if isinstance(next_episode, dict)
                    else None
                ),
            )

        payload = await self._get(f"/movie/{tmdb_id}")
        return TitleDetails(
            status=payload.get("status"),
            poster_path=payload.get("poster_path"),
            runtime=parse_int(payload.get("runtime")),
            countries=self._country_codes(payload),
            companies=self._company_names(payload),
        )

    async def get_credits(self, tmdb_id: int, kind: TitleKind | str) -> Credits:
        """Fetch cast and crew; TV shows use the aggregated series credits."""

        if TitleKind(kind) is TitleKind.SERIES:
            payload = await self._get(f"/tv/{tmdb_id}/aggregate_credits")
        else:
            payload = await self._get(f"/movie/{tmdb_id}/credits")

        cast = [
            member
            for member in (self._credit_member(raw) for raw in payload.get("cast") or [])
            if member is not None
        ]
        crew = [
            member
            for member in (self._credit_member(raw) for raw in payload.get("crew") or [])
            if member is not None
        ]
        return Credits(cast=cast, crew=crew)

    async def get_person(self, person_id: int) -> PersonDetails:
        payload = await self._get(f"/person/{person_id}")
        imdb_id = payload.get("imdb_id")
        return PersonDetails(
            tmdb_id=person_id,
            imdb_id=str(imdb_id) if imdb_id else None,
        )

    @staticmethod
    def _credit_member(raw: Any) -> CreditMember | None:
        if not isinstance(raw, dict) or raw.get("id") is None:
            return None
        job = raw.get("job")
        if job is None:
            # Aggregate credits list every job a crew member held.
            jobs = raw.get("jobs") or []
            if jobs and isinstance(jobs[0], dict):
                job = jobs[0].get("job")
        return CreditMember(
            tmdb_id=int(raw["id"]),
            name=str(raw.get("name") or ""),
            profile_path=raw.get("profile_path"),
            order=parse_int(raw.get("order")),
            job=job,
        )

    @staticmethod
    def _country_codes(payload: dict[str, Any]) -> list[str]:
        return [
            str(country["iso_3166_1"])
            for country in payload.get("production_countries") or []
            if isinstance(country, dict) and country.get("iso_3166_1")
        ]

    @staticmethod
    def _company_names(payload: dict[str, Any]) -> list[str]:
        return [
            str(company["name"])
            for company in payload.get("production_companies") or []
            if isinstance(company, dict) and company.get("name")
        ]
