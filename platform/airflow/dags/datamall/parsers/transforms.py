"""
Per-field value transforms for DataMall CSV exports.

Transforms run after type inference in parse_records, so each one may see
a str, an int/float, or None.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from functools import reduce
from typing import Any

Transform = Callable[[Any], Any]

_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")


def to_number(value: Any) -> int | float | None:
    """
    Parse a count or price such as "1,234", "45,000.50" or 1234.

    Blank values (None, "", "-") become None. Integral results are
    returned as int.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isnan(value) and value.is_integer():
            return int(value)
        return value

    text = str(value).strip().replace(",", "")
    if text in ("", "-"):
        return None
    if not _NUMBER_RE.match(text):
        raise ValueError(f"Not a number: {value!r}")
    number = float(text)
    return int(number) if number.is_integer() else number


def to_number_or_zero(value: Any) -> int | float:
    number = to_number(value)
    return 0 if number is None else number


def uppercase(value: Any) -> Any:
    if isinstance(value, str):
        return value.upper()
    return value


def clean_special_chars(
    value: Any, separator: str, join_separator: str = ""
) -> Any:
    """Drop `separator` from text, e.g. "B.M.W." -> "BMW"."""
    if not isinstance(value, str):
        return value
    return join_separator.join(value.split(separator))


def collapse_slash_spacing(value: Any) -> Any:
    """Normalize "Saloon / Sports" to "Saloon/Sports"."""
    if not isinstance(value, str):
        return value
    return re.sub(r"\s*/\s*", "/", value)


def compose(*fns: Transform) -> Transform:
    """Chain transforms left to right."""
    return lambda value: reduce(lambda acc, fn: fn(acc), fns, value)
