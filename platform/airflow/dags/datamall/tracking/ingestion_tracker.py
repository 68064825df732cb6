from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

LOG_TABLE = "meta.ingest_log"

LOG_COLUMNS = (
    "source",
    "dataset_id",
    "target_table",
    "status",
    "rows_parsed",
    "rows_inserted",
    "high_water_mark",
    "metadata",
    "started_at",
    "completed_at",
    "error_message",
)


@dataclass
class IngestionRun:
    """State of one updater run for one table."""

    source: str
    dataset_id: str
    target_table: str
    metadata: dict[str, Any] = field(default_factory=dict)
    rows_parsed: int = 0
    rows_inserted: int = 0
    high_water_mark: str | None = None
    status: str = "running"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def as_log_row(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "dataset_id": self.dataset_id,
            "target_table": self.target_table,
            "status": self.status,
            "rows_parsed": self.rows_parsed,
            "rows_inserted": self.rows_inserted,
            "high_water_mark": self.high_water_mark,
            "metadata": json.dumps(self.metadata, default=str),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error_message": self.error,
        }

    def __enter__(self) -> IngestionRun:
        self.started_at = datetime.now(UTC)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.completed_at = datetime.now(UTC)
        self.status = "success" if exc_type is None else "failed"
        if exc_val is not None:
            self.error = str(exc_val)
        return False


class IngestionTracker:
    """
    Run log for table updates, backed by meta.ingest_log.

    Every run is written, failed ones included, so the log shows what was
    attempted as well as what landed. For DataMall files the high-water
    mark is the checksum of the file a run processed.

    With no engine the tracker works in memory only. Log writes are
    best-effort; a failed write is logged and never fails the run.
    """

    TABLE_NAME = LOG_TABLE

    def __init__(self, engine: Any | None = None) -> None:
        self.engine = engine
        self.logger = logging.getLogger("ingestion_tracker")
        self._runs: list[IngestionRun] = []
        self._latest_marks: dict[tuple[str, str], str] = {}

    def ensure_table(self) -> None:
        if self.engine is None:
            return
        self.engine.execute("create schema if not exists meta")
        self.engine.execute(
            f"""
            create table if not exists {LOG_TABLE} (
                id               bigserial primary key,
                source           text not null,
                dataset_id       text not null,
                target_table     text not null,
                status           text not null,
                rows_parsed      integer not null default 0,
                rows_inserted    integer not null default 0,
                high_water_mark  text,
                metadata         jsonb,
                started_at       timestamptz,
                completed_at     timestamptz,
                error_message    text
            )
            """
        )

    @contextmanager
    def track(
        self,
        source: str,
        dataset_id: str,
        target_table: str,
        metadata: dict[str, Any] | None = None,
    ) -> Iterator[IngestionRun]:
        run = IngestionRun(
            source=source,
            dataset_id=dataset_id,
            target_table=target_table,
            metadata=metadata or {},
        )
        self._runs.append(run)
        try:
            with run:
                yield run
        finally:
            self._record(run)

    def _record(self, run: IngestionRun) -> None:
        if self.engine is not None:
            placeholders = ", ".join(f"%({col})s" for col in LOG_COLUMNS)
            try:
                self.engine.execute(
                    f"insert into {LOG_TABLE} ({', '.join(LOG_COLUMNS)}) "
                    f"values ({placeholders})",
                    run.as_log_row(),
                )
            except Exception as e:
                self.logger.error(
                    "Could not write %s run for %s to %s: %s",
                    run.status,
                    run.dataset_id,
                    LOG_TABLE,
                    e,
                )
                return
        if run.succeeded and run.high_water_mark:
            self._latest_marks[(run.source, run.dataset_id)] = run.high_water_mark

    def get_high_water_mark(self, source: str, dataset_id: str) -> str | None:
        """High-water mark of the newest successful run, or None."""
        mark = self._latest_marks.get((source, dataset_id))
        if mark is not None or self.engine is None:
            return mark

        try:
            rows = self.engine.fetch_dicts(
                f"""
                select high_water_mark
                from {LOG_TABLE}
                where source = %(source)s
                  and dataset_id = %(dataset_id)s
                  and status = 'success'
                  and high_water_mark is not null
                order by completed_at desc
                limit 1
                """,
                {"source": source, "dataset_id": dataset_id},
            )
        except Exception as e:
            self.logger.warning("High-water mark lookup for %s failed: %s", dataset_id, e)
            return None

        if not rows:
            return None
        mark = str(rows[0]["high_water_mark"])
        self._latest_marks[(source, dataset_id)] = mark
        return mark

    @property
    def runs(self) -> list[IngestionRun]:
        return list(self._runs)

    @property
    def last_run(self) -> IngestionRun | None:
        return self._runs[-1] if self._runs else None
