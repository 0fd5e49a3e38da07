"""Operator names shared by both query evaluators."""

from __future__ import annotations

import re
from collections.abc import Iterable

from ..errors import MalformedError

LOGICAL_OPERATORS: tuple[str, ...] = ("$or", "$and", "$nor")

COMPARISON_OPERATORS: tuple[str, ...] = ("$eq", "$ne", "$gt", "$lt", "$gte", "$lte")
MEMBERSHIP_OPERATORS: tuple[str, ...] = ("$in", "$nin")
ARRAY_OPERATORS: tuple[str, ...] = ("$all", "$none")

EXPRESSION_OPERATORS: tuple[str, ...] = (
    COMPARISON_OPERATORS + MEMBERSHIP_OPERATORS + ("$not",) + ARRAY_OPERATORS
)

_FIELD = re.compile(r"^\w+$")


def check_field(name: str, columns: Iterable[str] | None = None) -> str:
    """Validate a field name used in a query.

    Raises:
        MalformedError: If the name is not a plain word or not a known column
    """
    if not isinstance(name, str) or not _FIELD.match(name):
        raise MalformedError(f'Field ("{name}") is not a valid field! Must be [a-zA-Z0-9_]+ only!')
    if columns is not None and name not in columns:
        raise MalformedError(f"Unknown field '{name}' in query", details={"field": name})
    return name


def check_list(operator: str, operand: object) -> list:
    """Validate the operand of a list-valued operator."""
    if not isinstance(operand, (list, tuple)):
        raise MalformedError(f"{operator} expects a list, got {type(operand).__name__}")
    return list(operand)
