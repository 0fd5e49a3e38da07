"""
Value encoding and decoding for table records.

Records are stored as flat rows of scalars. On write, scalars (str, int,
float, bool, None) pass through, datetimes become ISO-8601 text and
anything else (dicts, lists) is serialized to JSON text. On read, the
column's declared ColumnType drives the conversion back.

compare_value() gives the third view of a stored cell: the value the
relational backend compares and sorts by. Int and Float columns hold
numbers where the stored text is a well-formed number, JSON columns are
decoded, and every other column compares as text.

Invariants:
    - None passes through both directions without coercion
    - Columns not declared in the schema are dropped on both directions
    - JSON decoding is best-effort: unparsable text is returned as is
    - text_value() renders a value the way SQLite casts it to TEXT

How to change safely:
    - Stored rows outlive code; decoding must keep accepting old encodings
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any

from .schema.types import ColumnDef, ColumnType

_SCALARS = (str, int, float, bool)
_TRUTHY = ("true", "1")
_NUMBER = re.compile(r"\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_value(value: Any) -> Any:
    """Encode a single value for storage."""
    if value is None or isinstance(value, _SCALARS):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return json.dumps(value, default=_json_default)


def encode_record(
    record: Mapping[str, Any] | None,
    columns: Mapping[str, ColumnDef],
) -> dict[str, Any]:
    """Encode the declared columns of a (partial) record."""
    if not record:
        return {}
    return {key: encode_value(value) for key, value in record.items() if key in columns}


def _parse_date(raw: Any) -> Any:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
    text = str(raw)
    try:
        return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return text


def _parse_int(raw: Any) -> Any:
    try:
        return int(raw)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return raw


def _parse_float(raw: Any) -> Any:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return raw


def decode_value(raw: Any, column_type: ColumnType) -> Any:
    """Decode a stored value according to its column type."""
    if raw is None:
        return None

    if column_type == ColumnType.BOOLEAN:
        return str(raw).strip().lower() in _TRUTHY
    if column_type == ColumnType.INT:
        return _parse_int(raw)
    if column_type == ColumnType.FLOAT:
        return _parse_float(raw)
    if column_type in (ColumnType.ID, ColumnType.STRING):
        return str(raw)
    if column_type == ColumnType.DATE:
        return _parse_date(raw)
    if column_type == ColumnType.JSON:
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def decode_record(
    row: Mapping[str, Any] | None,
    columns: Mapping[str, ColumnDef],
) -> dict[str, Any] | None:
    """Decode a stored row into a record of declared columns."""
    if row is None:
        return None
    return {
        key: decode_value(row[key], columns[key].type)
        for key in row.keys()
        if key in columns
    }


def text_value(value: Any) -> str:
    """Render a value as SQLite casts it to TEXT (booleans as "1"/"0")."""
    encoded = encode_value(value)
    if isinstance(encoded, bool):
        return "1" if encoded else "0"
    return str(encoded)


def _numeric(raw: Any) -> Any:
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, (int, float)):
        return raw
    text = text_value(raw)
    if not _NUMBER.fullmatch(text):
        return text
    try:
        return int(text)
    except ValueError:
        number = float(text)
    return number if math.isfinite(number) else text


def compare_value(raw: Any, column_type: ColumnType) -> Any:
    """Value of a stored cell as the relational backend compares it."""
    if raw is None:
        return None
    if column_type == ColumnType.JSON:
        return decode_value(raw, column_type)
    if column_type in (ColumnType.INT, ColumnType.FLOAT):
        return _numeric(raw)
    return text_value(raw)


def compare_record(
    row: Mapping[str, Any],
    columns: Mapping[str, ColumnDef],
) -> dict[str, Any]:
    """Comparison view of a stored row, one entry per declared column."""
    return {key: compare_value(row.get(key), column.type) for key, column in columns.items()}


def storage_order(value: Any) -> tuple:
    """Sort key ranking NULL before numbers before text, as SQLite does."""
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, value)
