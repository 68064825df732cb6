"""
Incremental updater for DataMall datasets.

An update run downloads the dataset, skips it when the file checksum is
unchanged, parses it, works out which records the target table does not
have yet, inserts those in batches and only then records the new checksum.

Usage:
    from datamall.collectors.updater.updater import Updater
    from datamall.sources.table_specs import CARS

    result = Updater(CARS, engine, checksum_store=ChecksumStore(engine)).update()
    print(result.message)
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from datamall import settings
from datamall.collectors.exceptions import (
    DownloadError,
    IngestionError,
    ParseError,
    StoreError,
)
from datamall.collectors.fetcher import Fetcher
from datamall.collectors.updater.spec import TableDescriptor
from datamall.parsers.csv_parser import parse_records
from datamall.tracking.checksum_store import ChecksumStore, calculate_checksum
from datamall.tracking.ingestion_tracker import IngestionRun, IngestionTracker

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = settings.DEFAULT_BATCH_SIZE

UNCHANGED_MESSAGE = "File has not changed since last update"
NO_NEW_DATA_MESSAGE = (
    "No new data to insert. The provided data matches the existing records."
)

KEY_SEPARATOR = "\x1f"


def inserted_message(count: int) -> str:
    return f"{count} record(s) inserted"


def _normalize_key_part(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, Decimal):
        if value.is_nan():
            return ""
        if value.is_finite() and value == value.to_integral_value():
            return str(int(value))
        return str(value.normalize())
    if isinstance(value, str):
        return value.strip()
    return str(value)


def create_unique_key(record: Mapping[str, Any], key_fields: Iterable[str]) -> str:
    """
    Composite identity of a record, built from its key fields.

    Numbers that are integral compare equal to their text form, so 2023,
    2023.0 and "2023" produce the same key whether they come from a parsed
    CSV or from the database.
    """
    return KEY_SEPARATOR.join(
        _normalize_key_part(record.get(field)) for field in key_fields
    )


@dataclass(frozen=True)
class UpdaterResult:
    target: str
    records_processed: int
    message: str
    timestamp: str
    checksum: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class Updater:
    """
    Runs one incremental update of a TableDescriptor's target table.

    Parameters
    ----------
    spec : TableDescriptor
    engine
        Store collaborator providing select_distinct, select_keys and
        insert_rows (PostgresEngine in production).
    checksum_store : ChecksumStore, optional
        Defaults to a ChecksumStore backed by `engine`.
    fetcher : Fetcher, optional
    tracker : IngestionTracker, optional
        When given, each run is recorded in meta.ingest_log.
    batch_size : int
        Rows per insert call.
    cache_invalidator : callable, optional
        Called with the table fqn after rows were inserted. Failures are
        logged and ignored.
    """

    SOURCE_NAME = "lta_datamall"

    def __init__(
        self,
        spec: TableDescriptor,
        engine: Any,
        checksum_store: ChecksumStore | None = None,
        fetcher: Fetcher | None = None,
        tracker: IngestionTracker | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cache_invalidator: Callable[[str], Any] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.spec = spec
        self.engine = engine
        self.checksum_store = (
            checksum_store if checksum_store is not None else ChecksumStore(engine)
        )
        self.fetcher = fetcher if fetcher is not None else Fetcher()
        self.tracker = tracker
        self.batch_size = batch_size
        self.cache_invalidator = cache_invalidator
        self.logger = logging.getLogger("datamall_updater")

    def update(self, force: bool = False) -> UpdaterResult:
        """
        Bring the target table up to date with the published file.

        force=True ignores an unchanged checksum and re-diffs the file, which
        repairs a table whose rows were removed after the last run.
        """
        if self.tracker is None:
            return self._run(None, force)

        with self.tracker.track(
            source=self.SOURCE_NAME,
            dataset_id=self.spec.name,
            target_table=self.spec.fqn,
            metadata={"url": self.spec.source_url, "csv_file": self.spec.csv_file_name},
        ) as run:
            result = self._run(run, force)
            run.metadata["message"] = result.message
            return result

    # ------------------------------------------------------------------ #
    #  Phases
    # ------------------------------------------------------------------ #

    def _run(self, run: IngestionRun | None, force: bool) -> UpdaterResult:
        spec = self.spec
        self.logger.info("Updating %s from %s", spec.fqn, spec.source_url)

        try:
            with self._phase("download", DownloadError):
                filepath = Path(
                    self.fetcher.download(spec.source_url, spec.csv_file_name)
                )
            identifier = filepath.name

            with self._phase("verify", DownloadError):
                checksum = calculate_checksum(filepath)
            with self._phase("verify", StoreError):
                cached = self.checksum_store.get_cached_checksum(identifier)
            self.logger.info("Checksum for %s: %s (cached: %s)", identifier, checksum, cached)
            if run is not None:
                run.high_water_mark = checksum

            if cached == checksum and not force:
                self.logger.info("%s: %s", spec.fqn, UNCHANGED_MESSAGE)
                return self._result(0, UNCHANGED_MESSAGE, checksum)

            with self._phase("parse", ParseError):
                records = parse_records(
                    filepath,
                    column_mapping=spec.column_mapping,
                    field_transforms=spec.field_transforms,
                )
            records = self._drop_duplicate_keys(records)
            if run is not None:
                run.rows_parsed = len(records)

            with self._phase("diff", StoreError):
                new_records = self._filter_new_records(records)

            inserted = 0
            if new_records:
                with self._phase("insert", StoreError):
                    inserted = self._insert_in_batches(new_records)
            if run is not None:
                run.rows_inserted = inserted

            with self._phase("commit", StoreError):
                self.checksum_store.cache_checksum(identifier, checksum)

            if inserted > 0:
                self._invalidate_cache()
                message = inserted_message(inserted)
            else:
                message = NO_NEW_DATA_MESSAGE

            self.logger.info("%s: %s", spec.fqn, message)
            return self._result(inserted, message, checksum)
        finally:
            self.fetcher.cleanup()

    @contextmanager
    def _phase(self, phase: str, error_cls: type[IngestionError]) -> Iterator[None]:
        """Attach table/phase context to failures and log them before re-raising."""
        try:
            yield
        except IngestionError as e:
            e.table = e.table or self.spec.fqn
            e.phase = e.phase or phase
            self.logger.error("Update of %s failed during %s: %s", self.spec.fqn, phase, e)
            raise
        except Exception as e:
            self.logger.error("Update of %s failed during %s: %s", self.spec.fqn, phase, e)
            raise error_cls(
                f"{phase} failed: {e}", phase=phase, table=self.spec.fqn
            ) from e

    def _drop_duplicate_keys(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        seen: set[str] = set()
        unique: list[dict[str, Any]] = []
        for record in records:
            key = create_unique_key(record, self.spec.key_fields)
            if key in seen:
                continue
            seen.add(key)
            unique.append(record)

        dropped = len(records) - len(unique)
        if dropped:
            self.logger.warning(
                "Dropped %d record(s) repeating a key within the source file for %s",
                dropped,
                self.spec.fqn,
            )
        return unique

    def _filter_new_records(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Records whose composite key is not yet in the target table.

        With a partition field, partitions absent from the table are taken
        whole and only overlapping partitions are compared key by key.
        Without one, or when some record has no partition value, keys are
        compared against the whole table.
        """
        if not records:
            return []

        spec = self.spec
        partition_field = spec.partition_field
        if partition_field is None:
            return self._diff_against(records, self._fetch_existing_keys())

        if any(_normalize_key_part(r.get(partition_field)) == "" for r in records):
            self.logger.warning(
                "Some records for %s have no %s value; diffing against the whole table",
                spec.fqn,
                partition_field,
            )
            return self._diff_against(records, self._fetch_existing_keys())

        incoming = {_normalize_key_part(r[partition_field]) for r in records}
        existing = {
            _normalize_key_part(value): value
            for value in self.engine.select_distinct(
                spec.target_table, spec.target_schema, partition_field
            )
        }
        new_partitions = incoming - existing.keys()
        overlapping = incoming & existing.keys()
        self.logger.info(
            "Partition analysis on %s: %d incoming, %d existing, %d new",
            partition_field,
            len(incoming),
            len(existing),
            len(new_partitions),
        )

        from_new: list[dict[str, Any]] = []
        from_overlapping: list[dict[str, Any]] = []
        for record in records:
            if _normalize_key_part(record[partition_field]) in new_partitions:
                from_new.append(record)
            else:
                from_overlapping.append(record)
        self.logger.info(
            "Records: %d from new partitions, %d from overlapping partitions",
            len(from_new),
            len(from_overlapping),
        )

        if not from_overlapping:
            return from_new

        existing_keys = self._fetch_existing_keys(
            where_values=[existing[p] for p in sorted(overlapping)]
        )
        return from_new + self._diff_against(from_overlapping, existing_keys)

    def _fetch_existing_keys(self, where_values: list[Any] | None = None) -> set[str]:
        spec = self.spec
        if where_values is None:
            rows = self.engine.select_keys(
                spec.target_table, spec.target_schema, list(spec.key_fields)
            )
        else:
            rows = self.engine.select_keys(
                spec.target_table,
                spec.target_schema,
                list(spec.key_fields),
                where_column=spec.partition_field,
                where_values=where_values,
            )
        return {create_unique_key(row, spec.key_fields) for row in rows}

    def _diff_against(
        self, records: list[dict[str, Any]], existing_keys: set[str]
    ) -> list[dict[str, Any]]:
        incoming_keys = {create_unique_key(r, self.spec.key_fields) for r in records}
        if incoming_keys <= existing_keys:
            self.logger.info(
                "All %d compared record(s) already exist in %s",
                len(records),
                self.spec.fqn,
            )
            return []
        return [
            r
            for r in records
            if create_unique_key(r, self.spec.key_fields) not in existing_keys
        ]

    def _insert_in_batches(self, records: list[dict[str, Any]]) -> int:
        spec = self.spec
        total = 0
        start = time.perf_counter()
        for i in range(0, len(records), self.batch_size):
            batch = records[i : i + self.batch_size]
            inserted = self.engine.insert_rows(batch, spec.target_table, spec.target_schema)
            total += inserted
            self.logger.info(
                "Inserted batch of %d record(s) into %s. Total: %d",
                inserted,
                spec.fqn,
                total,
            )
        self.logger.info(
            "Inserted %d record(s) into %s in %.0fms",
            total,
            spec.fqn,
            (time.perf_counter() - start) * 1000,
        )
        return total

    def _invalidate_cache(self) -> None:
        if self.cache_invalidator is None:
            return
        try:
            self.cache_invalidator(self.spec.fqn)
        except Exception as e:
            self.logger.warning("Cache invalidation for %s failed: %s", self.spec.fqn, e)

    def _result(self, count: int, message: str, checksum: str | None) -> UpdaterResult:
        return UpdaterResult(
            target=self.spec.fqn,
            records_processed=count,
            message=message,
            timestamp=datetime.now(UTC).isoformat(),
            checksum=checksum,
        )


def update(
    spec: TableDescriptor, engine: Any, force: bool = False, **options: Any
) -> UpdaterResult:
    """Run a single update of `spec` with a freshly built Updater."""
    return Updater(spec, engine, **options).update(force=force)
