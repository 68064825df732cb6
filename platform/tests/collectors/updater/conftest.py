from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any

import pytest
from datamall.collectors.updater.spec import TableDescriptor
from datamall.collectors.updater.updater import Updater
from datamall.tracking.checksum_store import ChecksumStore

# ---------------------------------------------------------------------------
# Fakes for the updater's collaborators
# ---------------------------------------------------------------------------


class FakeEngine:
    """
    In-memory table implementing the updater's store contract.

    Every call is recorded in `calls` as (method, details) so tests can
    assert which queries were issued.
    """

    def __init__(self, rows: list[dict[str, Any]] | None = None):
        self.rows: list[dict[str, Any]] = [dict(r) for r in rows or []]
        self.calls: list[tuple[str, Any]] = []
        self.insert_batches: list[list[dict[str, Any]]] = []
        self.fail_on_insert_call: int | None = None
        self.fail_select_distinct: Exception | None = None

    def select_distinct(self, target_table, target_schema, column):
        self.calls.append(("select_distinct", column))
        if self.fail_select_distinct is not None:
            raise self.fail_select_distinct
        values: list[Any] = []
        for row in self.rows:
            value = row.get(column)
            if value is not None and value not in values:
                values.append(value)
        return values

    def select_keys(
        self, target_table, target_schema, key_fields, where_column=None, where_values=None
    ):
        self.calls.append(
            (
                "select_keys",
                {
                    "where_column": where_column,
                    "where_values": None if where_values is None else list(where_values),
                },
            )
        )
        rows = self.rows
        if where_column is not None:
            wanted = list(where_values)
            rows = [r for r in rows if r.get(where_column) in wanted]
        return [{f: r.get(f) for f in key_fields} for r in rows]

    def insert_rows(self, rows, target_table, target_schema):
        self.calls.append(("insert_rows", len(rows)))
        if self.fail_on_insert_call == len(self.insert_batches) + 1:
            raise RuntimeError("connection lost during insert")
        self.insert_batches.append([dict(r) for r in rows])
        self.rows.extend(dict(r) for r in rows)
        return len(rows)

    def calls_to(self, method: str) -> list[Any]:
        return [details for name, details in self.calls if name == method]


class FakeFetcher:
    """Serves `content` as the downloaded file; change it to simulate a new release."""

    def __init__(self, download_dir: Path, content: str = "", file_name: str = "cars.csv"):
        self.download_dir = download_dir
        self.content = content
        self.file_name = file_name
        self.downloads: list[tuple[str, str | None]] = []
        self.cleanups = 0
        self.error: Exception | None = None

    def download(self, url: str, csv_file_name: str | None = None) -> Path:
        self.downloads.append((url, csv_file_name))
        if self.error is not None:
            raise self.error
        self.download_dir.mkdir(parents=True, exist_ok=True)
        path = self.download_dir / (csv_file_name or self.file_name)
        path.write_text(self.content, encoding="utf-8")
        return path

    def cleanup(self) -> None:
        self.cleanups += 1


def to_csv(records: list[dict[str, Any]], fieldnames: list[str] | None = None) -> str:
    fieldnames = fieldnames or list(records[0].keys())
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=fieldnames, lineterminator="\n")
    writer.writeheader()
    writer.writerows(records)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cars_spec():
    return TableDescriptor(
        name="cars",
        target_table="cars",
        source_url="https://datamall.example/Monthly New Registration of Cars by Make.zip",
        key_fields=("month", "make", "fuel_type"),
        partition_field="month",
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def fetcher(tmp_path):
    return FakeFetcher(tmp_path / "downloads")


@pytest.fixture
def checksum_store():
    return ChecksumStore()


@pytest.fixture
def csv_text():
    return to_csv


@pytest.fixture
def make_engine():
    return FakeEngine


@pytest.fixture
def make_updater(cars_spec, engine, fetcher, checksum_store):
    def _make(**overrides) -> Updater:
        options = dict(
            spec=cars_spec,
            engine=engine,
            checksum_store=checksum_store,
            fetcher=fetcher,
        )
        options.update(overrides)
        return Updater(**options)

    return _make
