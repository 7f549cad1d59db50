"""Pydantic models describing import rows and API payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import total_pages

MAX_LIMIT = 100

KindName = Literal["movie", "series"]
RoleName = Literal["actor", "director"]

T = TypeVar("T")


class ImportRow(BaseModel):
    """One row of an IMDb ratings export."""

    model_config = ConfigDict(
        populate_by_name=True, str_strip_whitespace=True, extra="ignore"
    )

    const: str = Field(alias="Const", pattern=r"^tt\d+$")
    title: str = Field(alias="Title", min_length=1)
    genres: str = Field(alias="Genres")
    your_rating: int | None = Field(default=None, alias="Your Rating", ge=1, le=10)
    date_rated: date | None = Field(default=None, alias="Date Rated")
    url: str | None = Field(default=None, alias="URL")
    title_type: str | None = Field(default=None, alias="Title Type")
    imdb_rating: float | None = Field(default=None, alias="IMDb Rating", ge=0, le=10)
    runtime_mins: int | None = Field(default=None, alias="Runtime (mins)", ge=0)
    year: int | None = Field(default=None, alias="Year", ge=1800, le=3000)
    num_votes: int | None = Field(default=None, alias="Num Votes", ge=0)
    release_date: str | None = Field(default=None, alias="Release Date")
    directors: str | None = Field(default=None, alias="Directors")

    @field_validator(
        "your_rating",
        "date_rated",
        "url",
        "title_type",
        "imdb_rating",
        "runtime_mins",
        "year",
        "num_votes",
        "release_date",
        "directors",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class PageQuery(BaseModel):
    """Pagination parameters shared by the paginated analytics."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=MAX_LIMIT)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class Page(BaseModel, Generic[T]):
    results: list[T]
    page: int
    total_pages: int
    total_results: int

    @classmethod
    def build(cls, results: list[T], query: PageQuery, total: int) -> "Page[T]":
        return cls(
            results=results,
            page=query.page,
            total_pages=total_pages(total, query.limit),
            total_results=total,
        )


class CreateListRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    file_id: str = Field(min_length=1, alias="fileId")

    model_config = ConfigDict(populate_by_name=True)


class RenameListRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class FileSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    size: int
    content_type: str
    created_at: datetime


class ListSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    file_id: str
    total_items: int
    status: str
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class TitleSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    tmdb_id: int | None = None
    title: str
    kind: KindName
    poster_path: str | None = None


class UpcomingTitle(BaseModel):
    external_id: str
    tmdb_id: int | None = None
    title: str
    poster_path: str | None = None
    next_episode_air_date: date


class PersonStat(BaseModel):
    tmdb_id: int
    name: str
    profile_path: str | None = None
    item_count: int
    titles: list[str] = Field(default_factory=list)


class RuntimeStats(BaseModel):
    total: int
    movies_runtime: int
    series_runtime: int
    total_runtime: int
