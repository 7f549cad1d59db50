"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_LEVELS: tuple[str, ...] = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ListLens", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./listlens.db", alias="DATABASE_URL"
    )
    storage_dir: str = Field(default="./storage", alias="STORAGE_DIR")

    tmdb_token: str | None = Field(default=None, alias="TMDB_TOKEN")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_rate_limit: float = Field(
        default=40.0, alias="TMDB_RATE_LIMIT", gt=0, le=1_000
    )
    tmdb_rate_burst: int | None = Field(
        default=None, alias="TMDB_RATE_BURST", ge=1, le=1_000
    )
    tmdb_enrichment_delay_ms: int = Field(
        default=25, alias="TMDB_ENRICHMENT_DELAY_MS", ge=0, le=10_000
    )
    top_actors_limit: int = Field(default=7, alias="TOP_ACTORS_LIMIT", ge=0, le=50)

    import_batch_size: int = Field(
        default=10, alias="IMPORT_BATCH_SIZE", ge=1, le=100
    )
    import_workers: int = Field(default=2, alias="IMPORT_WORKERS", ge=1, le=32)
    maintenance_interval_seconds: int = Field(
        default=86_400, alias="MAINTENANCE_INTERVAL", ge=60
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: object) -> str:
        """Accept log levels regardless of case."""

        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if not level:
            return "INFO"
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("tmdb_token", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @model_validator(mode="after")
    def _sync_rate_burst(self) -> "Settings":
        """Default the burst size to one second worth of requests."""

        if self.tmdb_rate_burst is None:
            self.tmdb_rate_burst = max(1, int(self.tmdb_rate_limit))
        return self

    @property
    def tmdb_enrichment_delay(self) -> float:
        """Return the post-enrichment pause in seconds."""

        return self.tmdb_enrichment_delay_ms / 1000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
