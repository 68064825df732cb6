from __future__ import annotations

from typing import ClassVar

import psycopg2

# Timeout and throttling; every 5xx is retryable as well.
RETRYABLE_STATUS_CODES = frozenset({408, 429})


class IngestionError(Exception):
    """
    Base class for every failure raised by an updater run.

    ``kind`` is a stable discriminant so callers (DAG tasks, scripts) can
    branch on the failure type without relying on subclass identity.
    ``phase`` and ``table`` record where the failure happened.
    """

    kind: ClassVar[str] = "ingestion"

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        table: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.table = table

    @property
    def retryable(self) -> bool:
        """Whether a later attempt of the same run could succeed."""
        return False

    def __str__(self) -> str:
        context = []
        if self.table:
            context.append(f"table={self.table}")
        if self.phase:
            context.append(f"phase={self.phase}")
        if not context:
            return self.message
        return f"[{' '.join(context)}] {self.message}"


class DownloadError(IngestionError):
    """Network or IO failure while fetching the source."""

    kind: ClassVar[str] = "download"

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        phase: str | None = "download",
        table: str | None = None,
    ) -> None:
        super().__init__(message, phase=phase, table=table)
        self.url = url
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        # No status means the request never completed (connection, timeout).
        if self.status_code is None:
            return True
        return (
            self.status_code in RETRYABLE_STATUS_CODES
            or 500 <= self.status_code < 600
        )


class ArchiveIntegrityError(IngestionError):
    """An expected entry is missing from (or unsafe inside) a downloaded archive."""

    kind: ClassVar[str] = "archive_integrity"

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        found: list[str] | None = None,
        phase: str | None = "download",
        table: str | None = None,
    ) -> None:
        super().__init__(message, phase=phase, table=table)
        self.expected = expected
        self.found = list(found or [])


class ParseError(IngestionError):
    """Malformed CSV content or a field transform that raised."""

    kind: ClassVar[str] = "parse"

    def __init__(
        self,
        message: str,
        *,
        filepath: str | None = None,
        line_number: int | None = None,
        field: str | None = None,
        phase: str | None = "parse",
        table: str | None = None,
    ) -> None:
        super().__init__(message, phase=phase, table=table)
        self.filepath = filepath
        self.line_number = line_number
        self.field = field


class StoreError(IngestionError):
    """Failure while probing, reading, or writing the target store."""

    kind: ClassVar[str] = "store"

    @property
    def retryable(self) -> bool:
        return isinstance(
            self.__cause__, (psycopg2.OperationalError, psycopg2.InterfaceError)
        )
