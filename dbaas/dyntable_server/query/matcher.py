"""
Evaluate queries directly against materialized records.

This is the evaluator for flat key-value backends that cannot run SQL.
It accepts the same query trees as compile_query() and agrees with it on
every operator both support. Where they differ:
- $in / $nin are true membership tests here
- $all / $none are supported (array membership)
- a plain key inside an expression addresses a nested field

With column types given, the record is expected in its comparison view
(codec.compare_record) and every operand of a non-JSON column is coerced
the same way, so "1" matches 1 in an Int column and an ISO string
compares with a Date column as stored text.

Example:
    >>> record = {"key": "k", "value": 2, "tags": ["a", "b"]}
    >>> resolve_query({"value": {"$gt": 1}, "tags": {"$all": ["a"]}}, record)
    True
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..codec import compare_value, encode_value, storage_order, text_value
from ..errors import MalformedError
from ..schema.types import ColumnType
from .operators import check_field, check_list

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$gt": operator.gt,
    "$lt": operator.lt,
    "$gte": operator.ge,
    "$lte": operator.le,
}

Coerce = Callable[[Any], Any]


def _field_value(value: Any, key: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(key)
    return None


def _coercer(column_type: ColumnType | None) -> Coerce | None:
    if column_type is None or column_type == ColumnType.JSON:
        return None

    def coerce(operand: Any) -> Any:
        return compare_value(encode_value(operand), column_type)

    return coerce


def _compare(op: str, value: Any, operand: Any, coerce: Coerce | None) -> bool:
    if coerce is not None:
        operand = coerce(operand)
        if value is None or operand is None:
            return False
        return bool(_COMPARATORS[op](storage_order(value), storage_order(operand)))

    subject = len(value) if isinstance(value, (list, tuple)) else value
    if subject is None or operand is None:
        return False
    try:
        return bool(_COMPARATORS[op](subject, operand))
    except TypeError:
        return False


def _member(value: Any, candidates: list, coerce: Coerce | None) -> bool:
    if coerce is not None:
        # Typed columns test membership of the text rendering, as SQL does
        if value is None:
            return False
        return text_value(value) in {text_value(c) for c in candidates if c is not None}
    if isinstance(value, (list, tuple)):
        return any(v in candidates for v in value)
    return value in candidates


def _resolve_operator(op: str, operand: Any, value: Any, coerce: Coerce | None = None) -> bool:
    if op == "$eq":
        return value == (coerce(operand) if coerce else operand)
    if op == "$ne":
        return value != (coerce(operand) if coerce else operand)
    if op in _COMPARATORS:
        return _compare(op, value, operand, coerce)
    if op == "$in":
        return _member(value, check_list(op, operand), coerce)
    if op == "$nin":
        candidates = check_list(op, operand)
        if coerce is None and isinstance(value, (list, tuple)):
            return not any(v in candidates for v in value)
        return not _member(value, candidates, coerce)
    if op == "$not":
        if not isinstance(operand, Mapping):
            raise MalformedError("$not expects a query expression")
        return not resolve_expr(operand, value, coerce)
    if op == "$all":
        wanted = check_list(op, operand)
        if not isinstance(value, (list, tuple)):
            return False
        return all(w in value for w in wanted)
    if op == "$none":
        unwanted = check_list(op, operand)
        if not isinstance(value, (list, tuple)):
            return False
        return not any(u in value for u in unwanted)
    raise MalformedError(f'Invalid operation "{op}"!')


def resolve_expr(expr: Mapping[str, Any], value: Any, coerce: Coerce | None = None) -> bool:
    """Test a value against a query expression.

    Every operator in the expression must hold. A key without a leading
    "$" descends into the value as a nested field. coerce, when given,
    converts each operand into the value's comparison form.
    """
    for key, operand in expr.items():
        if isinstance(key, str) and key.startswith("$"):
            matched = _resolve_operator(key, operand, value, coerce)
        else:
            nested = _field_value(value, key)
            if isinstance(operand, Mapping):
                matched = resolve_expr(operand, nested)
            else:
                matched = nested == operand
        if not matched:
            return False
    return True


def resolve_query(
    query: Mapping[str, Any] | None,
    record: Mapping[str, Any],
    columns: Iterable[str] | None = None,
    types: Mapping[str, ColumnType] | None = None,
) -> bool:
    """Test a record against a query.

    Args:
        query: Query tree (logical operators and field expressions)
        record: Materialized record, or its comparison view when types is given
        columns: Known column names; unknown fields raise MalformedError
        types: Column types driving operand coercion

    Returns:
        Whether the record matches

    Raises:
        MalformedError: On unknown operators, invalid fields or operands
    """
    if not query:
        return True
    if not isinstance(query, Mapping):
        raise MalformedError(f"Query must be an object, got {type(query).__name__}")

    for key, expr in query.items():
        if key == "$or":
            if not any(resolve_query(q, record, columns, types) for q in check_list(key, expr)):
                return False
        elif key == "$and":
            if not all(resolve_query(q, record, columns, types) for q in check_list(key, expr)):
                return False
        elif key == "$nor":
            if any(resolve_query(q, record, columns, types) for q in check_list(key, expr)):
                return False
        elif isinstance(key, str) and key.startswith("$"):
            raise MalformedError(f'Invalid operation "{key}"!')
        else:
            check_field(key, columns)
            value = record.get(key)
            coerce = _coercer(types.get(key) if types else None)
            if isinstance(expr, Mapping):
                if not resolve_expr(expr, value, coerce):
                    return False
            elif value != (coerce(expr) if coerce else expr):
                return False

    return True
