"""Exceptions raised by the list import and analytics services."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ParseIssue:
    """A line the CSV parser could not read."""

    line: int
    message: str


@dataclass(slots=True)
class RowIssue:
    """Field-level validation errors for one data row (1-based)."""

    row: int
    errors: list[str]


class ListImportError(ValueError):
    """Raised when an uploaded file cannot be turned into rows."""


class EmptyFile(ListImportError):
    def __init__(self) -> None:
        super().__init__("CSV file is empty")


class ParseError(ListImportError):
    """The delimited text itself is malformed."""

    def __init__(self, issues: list[ParseIssue]):
        self.issues = issues
        details = "; ".join(f"line {issue.line}: {issue.message}" for issue in issues)
        super().__init__(f"CSV parsing failed: {details}")


class ValidationFailed(ListImportError):
    """One or more rows do not match the expected row shape."""

    preview_size = 5

    def __init__(self, issues: list[RowIssue]):
        self.issues = issues
        super().__init__(self._build_message(issues))

    @classmethod
    def _build_message(cls, issues: list[RowIssue]) -> str:
        details = ". ".join(
            f"Row {issue.row}: {issue.errors[0] if issue.errors else 'invalid row'}"
            for issue in issues[: cls.preview_size]
        )
        if len(issues) > cls.preview_size:
            return (
                f"Validation failed for at least {len(issues)} rows. "
                f"First errors - {details}. Please fix the errors and try again."
            )
        return f"Validation failed. {details}"


class CatalogServiceError(RuntimeError):
    """A request to the external catalog service failed."""


class FileNotFound(LookupError):
    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"File {file_id} not found")


class FileAccessDenied(PermissionError):
    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__("File not found or access denied")


class ListNotFound(LookupError):
    def __init__(self, list_id: str):
        self.list_id = list_id
        super().__init__(f"List with ID {list_id} not found")


class ListNotReady(RuntimeError):
    """Analytics were requested for a list that has not completed."""

    def __init__(self, status: str, message: str):
        self.status = status
        super().__init__(message)


class NotReady(ListNotReady):
    def __init__(self) -> None:
        super().__init__(
            "processing", "List is still processing. Please try again later."
        )


class ProcessingFailed(ListNotReady):
    def __init__(self, reason: str | None):
        self.reason = reason
        super().__init__(
            "failed", f"List processing failed: {reason or 'Unknown error.'}"
        )
