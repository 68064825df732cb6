from __future__ import annotations

import csv
import logging
import re
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from datamall.collectors.exceptions import ParseError

logger = logging.getLogger(__name__)

FieldTransform = Callable[[Any], Any]

_INT_RE = re.compile(r"^[+-]?(0|[1-9]\d*)$")
_FLOAT_RE = re.compile(r"^[+-]?(0|[1-9]\d*)\.\d+$")


def infer_scalar(value: Any) -> Any:
    """
    Turn plain numeric text into int/float.

    Text with leading zeros ("007", "01") stays text so codes are not
    mangled; anything that is not a str is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    return value


def parse_records(
    filepath: str | Path,
    column_mapping: Mapping[str, str] | None = None,
    field_transforms: Mapping[str, FieldTransform] | None = None,
    delimiter: str = ",",
    encoding: str = "utf-8-sig",
    infer_types: bool = True,
) -> list[dict[str, Any]]:
    """
    Parse a CSV into fully transformed records.

    Values are stripped, headers are renamed through column_mapping, plain
    numbers are inferred (when infer_types), and field_transforms are then
    applied by the renamed field name. Transforms may therefore receive a
    str, an int/float, or None and must handle all three.

    Raises:
        ParseError: unreadable file, malformed CSV, a row with more fields
            than the header, or a transform that raised.
    """
    filepath = Path(filepath)
    column_mapping = dict(column_mapping or {})
    field_transforms = dict(field_transforms or {})
    records: list[dict[str, Any]] = []

    try:
        f = open(filepath, encoding=encoding, newline="")
    except OSError as e:
        raise ParseError(
            f"Cannot open CSV file {filepath}: {e}", filepath=str(filepath)
        ) from e

    with f:
        reader = csv.DictReader(f, delimiter=delimiter)
        try:
            for row in reader:
                line_number = reader.line_num
                if None in row:
                    raise ParseError(
                        f"Row at line {line_number} of {filepath.name} has "
                        f"{len(row[None])} more field(s) than the header",
                        filepath=str(filepath),
                        line_number=line_number,
                    )
                records.append(
                    _transform_row(
                        row,
                        column_mapping,
                        field_transforms,
                        infer_types,
                        filepath,
                        line_number,
                    )
                )
        except csv.Error as e:
            raise ParseError(
                f"Malformed CSV in {filepath.name} near line {reader.line_num}: {e}",
                filepath=str(filepath),
                line_number=reader.line_num,
            ) from e
        except UnicodeDecodeError as e:
            raise ParseError(
                f"Cannot decode {filepath.name} as {encoding}: {e}",
                filepath=str(filepath),
            ) from e

    logger.info("Parsed %d records from %s", len(records), filepath)
    return records


def _transform_row(
    row: dict[str, Any],
    column_mapping: dict[str, str],
    field_transforms: dict[str, FieldTransform],
    infer_types: bool,
    filepath: Path,
    line_number: int,
) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for header, raw in row.items():
        header = header.strip()
        name = column_mapping.get(header, header)
        value = raw.strip() if isinstance(raw, str) else raw
        if value == "":
            value = None
        if infer_types:
            value = infer_scalar(value)
        record[name] = value

    for name, transform in field_transforms.items():
        if name not in record:
            continue
        try:
            record[name] = transform(record[name])
        except Exception as e:
            raise ParseError(
                f"Transform for field {name!r} failed on value "
                f"{record[name]!r} at line {line_number} of {filepath.name}: {e}",
                filepath=str(filepath),
                line_number=line_number,
                field=name,
            ) from e

    return record
