"""Parse uploaded CSV exports into validated rows."""

from __future__ import annotations

import csv
import io
import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import EmptyFile, ParseError, ParseIssue, RowIssue, ValidationFailed

logger = logging.getLogger(__name__)

VALIDATION_BATCH_SIZE = 100
MAX_ERRORS_TO_REPORT = 10

RowT = TypeVar("RowT", bound=BaseModel)


def parse_csv(content: str, *, delimiter: str = ",") -> list[dict[str, str | None]]:
    """Parse delimited text into header-keyed records.

    Empty lines are skipped. Surplus fields on a row are folded into the last
    column so an unquoted trailing list (``Action,Drama``) stays intact, and
    missing trailing fields map to ``None``. Malformed quoting raises
    :class:`ParseError` before any record is returned.
    """

    if content.startswith("\ufeff"):
        content = content[1:]

    reader = csv.reader(io.StringIO(content, newline=""), delimiter=delimiter, strict=True)
    header: list[str] | None = None
    records: list[dict[str, str | None]] = []
    try:
        for fields in reader:
            if _is_blank_line(fields):
                continue
            if header is None:
                header = [name.strip() for name in fields]
                continue
            records.append(_map_fields(header, fields, delimiter))
    except csv.Error as exc:
        raise ParseError([ParseIssue(line=reader.line_num, message=str(exc))]) from exc
    return records


def _is_blank_line(fields: list[str]) -> bool:
    # Delimiter-only rows are data and go through validation.
    return not fields or (len(fields) == 1 and not fields[0].strip())


def _map_fields(
    header: list[str], fields: list[str], delimiter: str
) -> dict[str, str | None]:
    if len(fields) > len(header) and header:
        overflow = delimiter.join(fields[len(header) - 1 :])
        fields = [*fields[: len(header) - 1], overflow]
    record: dict[str, str | None] = {}
    for index, name in enumerate(header):
        record[name] = fields[index] if index < len(fields) else None
    return record


def parse_and_validate(
    content: str, row_model: type[RowT], *, delimiter: str = ","
) -> list[RowT]:
    """Return the typed rows of ``content`` in file order.

    Raises :class:`EmptyFile` when there are no data rows and
    :class:`ValidationFailed` when any row does not fit ``row_model``; at most
    ``MAX_ERRORS_TO_REPORT`` failing rows are collected before giving up.
    """

    records = parse_csv(content, delimiter=delimiter)
    if not records:
        raise EmptyFile()

    validated: list[RowT] = []
    issues: list[RowIssue] = []

    for start in range(0, len(records), VALIDATION_BATCH_SIZE):
        batch = records[start : start + VALIDATION_BATCH_SIZE]
        for offset, record in enumerate(batch):
            try:
                validated.append(row_model.model_validate(record))
            except ValidationError as exc:
                issues.append(
                    RowIssue(row=start + offset + 1, errors=_format_errors(exc))
                )
                if len(issues) >= MAX_ERRORS_TO_REPORT:
                    break
        if len(issues) >= MAX_ERRORS_TO_REPORT:
            break

    if issues:
        logger.info(
            "Rejected CSV with %s invalid row(s) out of %s", len(issues), len(records)
        )
        raise ValidationFailed(issues)

    return validated


def _format_errors(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return messages
