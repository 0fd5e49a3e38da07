"""
Compose table fragments into one executable GraphQL schema.

make_schema() joins the built-in types with every TableSurface into a
single document with one Query, Mutation and Subscription root, then
binds resolvers with ariadne. declare_types() goes the other way: it
reflects an externally authored type declaration into field lists that
declared_type_to_schema() turns into storage schemas.

Invariants:
    - An empty catalog still yields a valid schema (Query { _empty: Void })
    - Built-in and root type names can never be declared as tables
    - execute() never raises for resolver failures; they are reported in
      the "errors" list of the result

How to change safely:
    - Keep BUILTIN_SDL and RESERVED_TYPE_NAMES in sync
    - Generated names must stay deterministic; clients hardcode them
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ariadne import MutationType, QueryType, graphql, make_executable_schema
from graphql import (
    GraphQLError,
    GraphQLList,
    GraphQLNonNull,
    GraphQLObjectType,
    GraphQLSchema,
    ObjectTypeDefinitionNode,
    build_ast_schema,
    parse,
)

from ..errors import MalformedError
from ..schema.types import RESERVED_TYPE_NAMES, ColumnDef, TableSchema, TypeAnnotation
from .builtins import BUILTIN_BINDABLES, BUILTIN_SDL
from .table import ParsedField, TableSurface

ROOT_TYPE_NAMES = ("Query", "Mutation", "Subscription")

Loader = Callable[[str, Any], Awaitable[Any]]


@dataclass
class SurfaceContext:
    """Context handed to every resolver.

    Attributes:
        user: Identity of the caller
        load: Resolve (type name, id) to a record of another table
    """

    user: Any
    load: Loader


@dataclass
class DeclaredType:
    """An object type reflected from a type declaration."""

    name: str
    fields: list[ParsedField] = field(default_factory=list)


def _root(name: str, lines: Sequence[str]) -> str:
    return f"type {name} {{\n  " + "\n  ".join(lines) + "\n}"


def make_schema(surfaces: Sequence[TableSurface]) -> GraphQLSchema:
    """Build the executable schema of a whole tenant catalog.

    Args:
        surfaces: One fragment per table

    Returns:
        Executable schema with resolvers bound

    Raises:
        MalformedError: If the composed document is not a valid schema
    """
    known = {s.name for s in surfaces}
    query = QueryType()
    bindables: list[Any] = [*BUILTIN_BINDABLES, query]
    parts = [BUILTIN_SDL]

    for surface in surfaces:
        parts.append(surface.type_sdl(known))
        bindables.append(surface.object_type(known))
        surface.bind_queries(query)

    if surfaces:
        mutation = MutationType()
        for surface in surfaces:
            surface.bind_mutations(mutation)
        bindables.append(mutation)
        parts.append(_root("Query", [f for s in surfaces for f in s.query_fields]))
        parts.append(_root("Mutation", [f for s in surfaces for f in s.mutation_fields]))
        parts.append(_root("Subscription", [f for s in surfaces for f in s.subscription_fields]))
    else:
        parts.append(_root("Query", ["_empty: Void"]))

    try:
        return make_executable_schema("\n\n".join(parts), *bindables)
    except (GraphQLError, TypeError) as exc:
        raise MalformedError(f"Invalid query surface: {exc}") from exc


def _annotation_of(type_: Any) -> TypeAnnotation:
    """Flatten a graphql-core type into an annotation."""
    nullable = True
    if isinstance(type_, GraphQLNonNull):
        nullable, type_ = False, type_.of_type
    if isinstance(type_, GraphQLList):
        item = type_.of_type
        item_nullable = True
        if isinstance(item, GraphQLNonNull):
            item_nullable, item = False, item.of_type
        if isinstance(item, (GraphQLList, GraphQLNonNull)):
            raise MalformedError(f"Nested list types are not supported: {type_}")
        return TypeAnnotation(item.name, nullable, is_list=True, item_nullable=item_nullable)
    return TypeAnnotation(type_.name, nullable)


def declare_types(text: str, stubs: str = "") -> list[DeclaredType]:
    """Reflect object types declared in text.

    Args:
        text: Type declarations, e.g. "type User { id: ID! name: String }"
        stubs: Extra declarations that only satisfy forward references

    Returns:
        One DeclaredType per object type with fields declared in text

    Raises:
        MalformedError: On syntax errors, unknown types or reserved names
    """
    try:
        declared = parse(text)
        schema = build_ast_schema(parse("\n".join((BUILTIN_SDL, stubs, text))))
    except (GraphQLError, TypeError) as exc:
        # SDL validation failures surface as TypeError
        raise MalformedError(f"Invalid type declaration: {exc}") from exc

    result = []
    for definition in declared.definitions:
        if not isinstance(definition, ObjectTypeDefinitionNode) or not definition.fields:
            continue
        name = definition.name.value
        if name in RESERVED_TYPE_NAMES or name in ROOT_TYPE_NAMES:
            raise MalformedError(f"Type name '{name}' is reserved")

        object_type: GraphQLObjectType = schema.get_type(name)
        result.append(
            DeclaredType(
                name=name,
                fields=[
                    ParsedField.from_annotation(key, _annotation_of(f.type))
                    for key, f in object_type.fields.items()
                ],
            )
        )
    return result


def declared_type_to_schema(declared: DeclaredType) -> TableSchema:
    """Convert a declared type into a storage schema (version 0, no indexes)."""
    return TableSchema(
        name=declared.name,
        columns={f.key: ColumnDef.from_annotation(f.type) for f in declared.fields},
    )


async def execute(
    schema: GraphQLSchema,
    document: str,
    context: SurfaceContext,
    variables: dict[str, Any] | None = None,
    debug: bool = False,
) -> dict[str, Any]:
    """Execute a GraphQL document.

    Returns:
        {"data": ...} plus "errors" when any occurred
    """
    data: dict[str, Any] = {"query": document}
    if variables:
        data["variables"] = variables
    _, result = await graphql(schema, data, context_value=context, debug=debug, logger=__name__)
    return result
