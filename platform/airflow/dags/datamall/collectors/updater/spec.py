from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True)
class TableDescriptor:
    """
    Defines one DataMall dataset and the table it is loaded into.

    Parameters
    ----------
    name : str
        Logical dataset name (e.g. "cars", "coe"). Used in logs and in
        meta.ingest_log.
    target_table : str
        Destination table name.
    source_url : str
        Remote location of the archive or CSV.
    key_fields : tuple[str, ...]
        Columns that together identify a record. Never empty.
    partition_field : str | None
        Column that splits the data into natural batches (month, year).
        None means every run diffs against the whole table.
    csv_file_name : str | None
        Entry to use when the archive holds more than one file.
    column_mapping : Mapping[str, str]
        Source CSV header -> target column.
    field_transforms : Mapping[str, Callable]
        Target column -> value transform, applied after renaming.
    target_schema : str
        Destination schema. Default "raw_data".
    """

    name: str
    target_table: str
    source_url: str
    key_fields: tuple[str, ...]
    partition_field: str | None = None
    csv_file_name: str | None = None
    column_mapping: Mapping[str, str] = field(default_factory=dict)
    field_transforms: Mapping[str, Callable[[Any], Any]] = field(default_factory=dict)
    target_schema: str = "raw_data"

    def __post_init__(self):
        key_fields = tuple(self.key_fields)
        if not key_fields:
            raise ValueError(f"TableDescriptor {self.name!r} needs at least one key field")
        if not self.source_url or not self.source_url.strip():
            raise ValueError(f"TableDescriptor {self.name!r} has no source_url")

        object.__setattr__(self, "key_fields", key_fields)
        object.__setattr__(
            self, "column_mapping", MappingProxyType(dict(self.column_mapping))
        )
        object.__setattr__(
            self, "field_transforms", MappingProxyType(dict(self.field_transforms))
        )

    @property
    def fqn(self) -> str:
        return f"{self.target_schema}.{self.target_table}"
