"""
Compile queries into parameterized SQL predicates.

compile_query() walks a query depth-first and returns the predicate text
plus the ordered positional parameters (qmark style) for sqlite3. No
literal is ever interpolated into the text.

Invariants:
    - Field names are validated and double-quoted
    - $all / $none raise NotSupportedError (no array semantics in SQL)
    - Negations are wrapped in COALESCE(..., 0) so that a NULL comparison
      counts as false before it is negated, which keeps the result equal to
      resolve_query() on records with missing values

$in / $nin are a containment test of the column's text inside a
delimiter-joined rendering of the candidate list, not a true set test:
a candidate containing the delimiter (U+001F) can match falsely.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..codec import encode_value, text_value
from ..errors import MalformedError, NotSupportedError
from .operators import ARRAY_OPERATORS, check_field, check_list

_DELIMITER = "\x1f"


def _quote(field: str) -> str:
    return f'"{field}"'


def _candidate_text(values: list) -> str:
    return _DELIMITER + _DELIMITER.join(text_value(v) for v in values if v is not None) + _DELIMITER


def _containment(field: str, values: list, params: list[Any]) -> str:
    params.append(_candidate_text(values))
    return f"instr(?, char(31) || {_quote(field)} || char(31))"


def _compile_operator(field: str, op: str, operand: Any, params: list[Any]) -> str:
    column = _quote(field)

    if op == "$eq":
        if operand is None:
            return f"{column} IS NULL"
        params.append(encode_value(operand))
        return f"{column} = ?"
    if op == "$ne":
        if operand is None:
            return f"{column} IS NOT NULL"
        params.append(encode_value(operand))
        return f"({column} != ? OR {column} IS NULL)"
    if op in ("$gt", "$lt", "$gte", "$lte"):
        symbol = {"$gt": ">", "$lt": "<", "$gte": ">=", "$lte": "<="}[op]
        params.append(encode_value(operand))
        return f"{column} {symbol} ?"
    if op == "$in":
        return f"{_containment(field, check_list(op, operand), params)} > 0"
    if op == "$nin":
        return f"COALESCE({_containment(field, check_list(op, operand), params)}, 0) = 0"
    if op == "$not":
        if not isinstance(operand, Mapping):
            raise MalformedError("$not expects a query expression")
        return f"NOT COALESCE(({_compile_field(field, operand, params)}), 0)"
    if op in ARRAY_OPERATORS:
        raise NotSupportedError(f"Cannot compile {op} to SQL Query")
    raise MalformedError(f'Invalid operation "{op}"!')


def _compile_field(field: str, expr: Any, params: list[Any]) -> str:
    if not isinstance(expr, Mapping):
        return _compile_operator(field, "$eq", expr, params)

    if not expr:
        return "1"

    parts: list[str] = []
    for op, operand in expr.items():
        if not isinstance(op, str) or not op.startswith("$"):
            raise NotSupportedError(
                f"Nested field access ('{field}.{op}') is not supported in SQL queries"
            )
        parts.append(_compile_operator(field, op, operand, params))

    if len(parts) == 1:
        return parts[0]
    return " AND ".join(f"({p})" for p in parts)


def _compile_group(op: str, queries: Any, params: list[Any], columns: Iterable[str] | None) -> str:
    subqueries = check_list(op, queries)
    compiled = [f"({_compile(q, params, columns) or '1'})" for q in subqueries]

    if op == "$and":
        return " AND ".join(compiled) if compiled else "1"
    if op == "$or":
        return " OR ".join(compiled) if compiled else "0"
    # $nor
    if not compiled:
        return "1"
    return f"NOT COALESCE(({' OR '.join(compiled)}), 0)"


def _compile(query: Any, params: list[Any], columns: Iterable[str] | None) -> str:
    if not isinstance(query, Mapping):
        raise MalformedError(f"Query must be an object, got {type(query).__name__}")

    statements: list[str] = []
    for key, value in query.items():
        if key in ("$or", "$and", "$nor"):
            statements.append(_compile_group(key, value, params, columns))
        elif isinstance(key, str) and key.startswith("$"):
            raise MalformedError(f'Invalid operation "{key}"!')
        else:
            check_field(key, columns)
            statements.append(_compile_field(key, value, params))

    return " AND ".join(f"({s})" for s in statements)


def compile_query(
    query: Mapping[str, Any] | None,
    columns: Iterable[str] | None = None,
) -> tuple[str, list[Any]]:
    """Compile a query into a SQL predicate.

    Args:
        query: Query tree (logical operators and field expressions)
        columns: Known column names; unknown fields raise MalformedError

    Returns:
        Tuple of (predicate_text, ordered_parameters). The predicate is an
        empty string for an empty query.

    Raises:
        MalformedError: On unknown operators, invalid fields or operands
        NotSupportedError: On $all, $none or nested field access

    Example:
        >>> compile_query({"age": {"$gte": 18}, "$or": [{"name": "a"}, {"name": None}]})
        ('("age" >= ?) AND ((("name" = ?)) OR (("name" IS NULL)))', [18, 'a'])
    """
    params: list[Any] = []
    if not query:
        return "", params
    known = set(columns) if columns is not None else None
    return _compile(query, params, known), params
