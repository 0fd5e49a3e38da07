"""
Built-in types shared by every generated query surface.

Date, JSON and Void are custom scalars; Operation names the batch
operation kinds; SearchOptions mirrors Table.search() options.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from ariadne import ScalarType
from graphql import GraphQLError
from graphql.language import FloatValueNode, IntValueNode, StringValueNode, ValueNode
from graphql.utilities import value_from_ast_untyped

BUILTIN_SDL = """
scalar Date
scalar JSON
scalar Void

enum Operation {
  add
  put
  del
}

input SearchOptions {
  skip: Int
  limit: Int
  query: JSON
  projection: [String]
  sort: String
}
""".strip()

date_scalar = ScalarType("Date")
json_scalar = ScalarType("JSON")
void_scalar = ScalarType("Void")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    raise ValueError(f"Cannot convert {type(value).__name__} to a date")


@date_scalar.serializer
def serialize_date(value: Any) -> str:
    return _to_datetime(value).isoformat()


@date_scalar.value_parser
def parse_date_value(value: Any) -> datetime:
    try:
        return _to_datetime(value)
    except ValueError as exc:
        raise GraphQLError(f"Invalid date: {value!r}") from exc


@date_scalar.literal_parser
def parse_date_literal(ast: ValueNode, variables: dict[str, Any] | None = None) -> datetime:
    if isinstance(ast, StringValueNode):
        return parse_date_value(ast.value)
    if isinstance(ast, (IntValueNode, FloatValueNode)):
        return parse_date_value(float(ast.value))
    raise GraphQLError("Dates must be a string or a number!")


@json_scalar.serializer
def serialize_json(value: Any) -> Any:
    return value


@json_scalar.value_parser
def parse_json_value(value: Any) -> Any:
    return value


@json_scalar.literal_parser
def parse_json_literal(ast: ValueNode, variables: dict[str, Any] | None = None) -> Any:
    return value_from_ast_untyped(ast, variables)


@void_scalar.serializer
def serialize_void(value: Any) -> None:
    return None


@void_scalar.value_parser
def parse_void_value(value: Any) -> None:
    return None


@void_scalar.literal_parser
def parse_void_literal(ast: ValueNode, variables: dict[str, Any] | None = None) -> None:
    return None


BUILTIN_BINDABLES = [date_scalar, json_scalar, void_scalar]
