"""Utility helpers for the ListLens service."""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any


SERIES_MARKERS: tuple[str, ...] = ("tv", "series")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_int(value: Any) -> int | None:
    """Return an integer or ``None`` for blank and malformed values."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if math.isfinite(number) else None


def parse_date(value: Any) -> date | None:
    """Return a date from an ISO-8601 value, ``None`` when unparseable."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def split_list(value: str | None, separator: str = ",") -> list[str]:
    """Split a delimited string into trimmed, non-empty parts."""

    if not value:
        return []
    return [part.strip() for part in value.split(separator) if part.strip()]


def is_series_type(title_type: str | None) -> bool:
    """Return whether a free-text title type describes a series."""

    lowered = (title_type or "").lower()
    return any(marker in lowered for marker in SERIES_MARKERS)


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0
