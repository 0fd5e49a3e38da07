"""
Query-surface fragment of a single table.

A TableSurface renders the GraphQL type definitions and root fields of
one table schema and binds their resolvers. Reference columns (any
annotation that is not a built-in name) are exposed twice: as a relation
field resolved through the context loader and as a raw "<field>ID" field.

Invariants:
    - The input type never contains "id" and types references as raw ids
    - Root field names derive from the table name only
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from dataclasses import dataclass, replace
from typing import Any, Callable

from ariadne import ObjectType

from ..errors import MalformedError, NotSupportedError
from ..schema.types import ID_COLUMN_NAME, TableSchema, TypeAnnotation
from ..store.base import SearchOptions, Table

logger = logging.getLogger(__name__)

INPUT_ONLY_TYPES = ("SearchOptions",)


@dataclass(frozen=True)
class ParsedField:
    """A field of a declared or generated object type.

    Attributes:
        key: Field name
        type: Full annotation, e.g. "[Tag!]!"
        raw_type: Innermost named type
        nullable: Whether the outermost type may be null
    """

    key: str
    type: str
    raw_type: str
    nullable: bool

    @classmethod
    def from_annotation(cls, key: str, annotation: TypeAnnotation) -> ParsedField:
        return cls(
            key=key,
            type=str(annotation),
            raw_type=annotation.raw_type,
            nullable=annotation.nullable,
        )

    @property
    def annotation(self) -> TypeAnnotation:
        return TypeAnnotation.parse(self.type)


class TableSurface:
    """GraphQL fragment for one table.

    Args:
        schema: Table schema to expose
        table: Bound table serving the root fields; optional when only the
            type definitions are needed
    """

    def __init__(self, schema: TableSchema, table: Table | None = None) -> None:
        self.schema = schema
        self.table = table

    @property
    def name(self) -> str:
        return self.schema.name

    @property
    def lname(self) -> str:
        return self.name[0].lower() + self.name[1:]

    def fields(self, known_types: Collection[str] | None = None) -> list[tuple[ParsedField, bool]]:
        """Fields of the object type, each with whether it is a relation.

        A reference to a type outside known_types degrades to the raw id
        shape. With known_types None every reference is kept.
        """
        result = []
        for key, column in self.schema.columns.items():
            annotation = TypeAnnotation.parse(column.annotation)
            if annotation.raw_type in INPUT_ONLY_TYPES:
                annotation = annotation.with_name("JSON")
            relation = annotation.is_reference
            if relation and known_types is not None and annotation.raw_type not in known_types:
                logger.warning(
                    f"Field '{self.name}.{key}' references unknown type "
                    f"'{annotation.raw_type}', exposing it as an ID",
                    extra={"table": self.name, "field": key},
                )
                annotation = annotation.with_name("ID")
                relation = False
            result.append((ParsedField.from_annotation(key, annotation), relation))
        return result

    def type_sdl(self, known_types: Collection[str] | None = None) -> str:
        """Object, input, batch input and batch return type definitions."""
        fields = self.fields(known_types)

        object_lines = []
        input_lines = []
        for field, relation in fields:
            annotation = field.annotation
            object_lines.append(f"{field.key}: {field.type}")
            raw_id = annotation.with_name("ID")
            if relation:
                object_lines.append(f"{field.key}ID: {replace(raw_id, nullable=True)}")
            if field.key != ID_COLUMN_NAME:
                input_type = raw_id if relation else annotation
                input_lines.append(f"{field.key}: {replace(input_type, nullable=True)}")

        if not input_lines:
            input_lines.append("_empty: Void")

        return "\n\n".join(
            [
                f"type {self.name} {{\n  " + "\n  ".join(object_lines) + "\n}",
                f"input {self.name}Input {{\n  " + "\n  ".join(input_lines) + "\n}",
                f"input {self.name}BatchInput {{\n"
                f"  type: Operation!\n  id: ID!\n  value: {self.name}Input\n}}",
                f"type {self.name}BatchReturn {{\n"
                f"  type: Operation!\n  id: ID!\n  value: {self.name}\n}}",
            ]
        )

    @property
    def query_fields(self) -> list[str]:
        return [
            f"{self.lname}s(filter: JSON): [{self.name}]!",
            f"search{self.name}s(search: SearchOptions!): [{self.name}]!",
            f"{self.lname}(id: ID!): {self.name}",
        ]

    @property
    def mutation_fields(self) -> list[str]:
        return [
            f"batch{self.name}(input: [{self.name}BatchInput!]!): [{self.name}BatchReturn]!",
            f"add{self.name}(input: {self.name}Input!): {self.name}!",
            f"put{self.name}(id: ID!, input: {self.name}Input!): {self.name}!",
            f"del{self.name}(id: ID!): Void",
        ]

    @property
    def subscription_fields(self) -> list[str]:
        return [f"{self.lname}(id: ID, op: Operation): {self.name}"]

    def object_type(self, known_types: Collection[str] | None = None) -> ObjectType:
        """Ariadne binding for the relation fields of the object type."""
        bindable = ObjectType(self.name)
        for field, relation in self.fields(known_types):
            if relation:
                annotation = field.annotation
                bindable.set_field(
                    field.key, _relation_resolver(field.key, annotation.raw_type, annotation.is_list)
                )
                bindable.set_field(field.key + "ID", _raw_resolver(field.key))
        return bindable

    def _require_table(self) -> Table:
        if self.table is None:
            raise NotSupportedError(f"Table '{self.name}' is not bound to storage")
        return self.table

    def bind_queries(self, query: ObjectType) -> None:
        async def resolve_all(_: Any, info: Any, filter: Any = None) -> list[dict[str, Any]]:
            if filter is not None and not isinstance(filter, Mapping):
                raise MalformedError("filter must be an object")
            return await self._require_table().all(filter)

        async def resolve_search(_: Any, info: Any, search: Mapping[str, Any]) -> list[dict[str, Any]]:
            return await self._require_table().search(SearchOptions.from_dict(search))

        async def resolve_one(_: Any, info: Any, id: str) -> dict[str, Any] | None:
            return await self._require_table().one(id)

        query.set_field(f"{self.lname}s", resolve_all)
        query.set_field(f"search{self.name}s", resolve_search)
        query.set_field(self.lname, resolve_one)

    def bind_mutations(self, mutation: ObjectType) -> None:
        async def resolve_batch(_: Any, info: Any, input: list[Mapping[str, Any]]) -> list:
            return await self._require_table().batch(input)

        async def resolve_add(_: Any, info: Any, input: Mapping[str, Any]) -> dict[str, Any]:
            return await self._require_table().add(input)

        async def resolve_put(_: Any, info: Any, id: str, input: Mapping[str, Any]) -> dict[str, Any]:
            return await self._require_table().put(id, input)

        async def resolve_del(_: Any, info: Any, id: str) -> None:
            await self._require_table().delete(id)

        mutation.set_field(f"batch{self.name}", resolve_batch)
        mutation.set_field(f"add{self.name}", resolve_add)
        mutation.set_field(f"put{self.name}", resolve_put)
        mutation.set_field(f"del{self.name}", resolve_del)


def _relation_resolver(key: str, type_name: str, is_list: bool) -> Callable:
    async def resolve(obj: Mapping[str, Any], info: Any) -> Any:
        value = obj.get(key)
        if value is None:
            return None
        load = info.context.load
        if is_list:
            values = value if isinstance(value, list) else [value]
            return [await load(type_name, v) if v is not None else None for v in values]
        return await load(type_name, value)

    return resolve


def _raw_resolver(key: str) -> Callable:
    def resolve(obj: Mapping[str, Any], info: Any) -> Any:
        return obj.get(key)

    return resolve
