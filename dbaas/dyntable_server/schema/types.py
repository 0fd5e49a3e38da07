"""
Core type definitions for the DynTable schema model.

A table's shape is plain data defined at runtime:
- ColumnType: closed set of value types a column can hold
- ColumnDef: type, nullability and optional external type annotation
- IndexDef: indexed column list and uniqueness
- TableSchema: named columns, indexes and a monotonically increasing version

Invariants:
    - A column named "id" always exists, has type ID and is never nullable
    - version starts at 0 and only the table store bumps it
    - Names seen here never carry the tenant namespace prefix

How to change safely:
    - ColumnType is persisted by value; never rename a member's value
    - Keep to_dict()/from_dict() symmetric, the catalog stores their output

Example:
    >>> schema = TableSchema(
    ...     name="Widget",
    ...     columns={
    ...         "name": ColumnDef(ColumnType.STRING, nullable=False, meta="String!"),
    ...         "owner": ColumnDef(ColumnType.ID, nullable=True, meta="User"),
    ...     },
    ... )
    >>> ensure_id_column(schema).columns["id"]
    ColumnDef(type=<ColumnType.ID: 'ID'>, nullable=False, meta='ID!')
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

from ..errors import MalformedError

ID_COLUMN_NAME = "id"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ANNOTATION = re.compile(r"^(\[)?\s*([A-Za-z_][A-Za-z0-9_]*)\s*(!)?\s*(\])?\s*(!)?$")


class ColumnType(Enum):
    """Supported column value types.

    ID is reserved for primary-key and reference columns. JSON holds
    arbitrary nested structures and is the fallback for anything else.
    """

    BOOLEAN = "Boolean"
    STRING = "String"
    INT = "Int"
    FLOAT = "Float"
    ID = "ID"
    DATE = "Date"
    JSON = "JSON"

    @classmethod
    def from_str(cls, value: str) -> ColumnType:
        """Convert string representation to ColumnType.

        Raises:
            ValueError: If value is not a valid column type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid column type '{value}'. Valid types: {valid}")


# Scalars every GraphQL implementation knows about.
CORE_SCALARS: tuple[str, ...] = ("Boolean", "String", "Int", "Float", "ID")

# Built-in names contributed by the query surface. Together with the core
# scalars these are never treated as references to another table.
BUILTIN_TYPES: tuple[str, ...] = ("Date", "JSON", "Void", "Operation", "SearchOptions")

RESERVED_TYPE_NAMES: tuple[str, ...] = CORE_SCALARS + BUILTIN_TYPES


def validate_identifier(name: str, what: str = "name") -> str:
    """Check that a table, column or namespace name is a plain identifier.

    Raises:
        MalformedError: If the name could not be safely quoted into SQL
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise MalformedError(
            f"Invalid {what} '{name}': must match [A-Za-z_][A-Za-z0-9_]*",
            details={what: name},
        )
    return name


@dataclass(frozen=True)
class TypeAnnotation:
    """Parsed external type annotation, e.g. ``[Tag!]!``.

    Attributes:
        raw_type: Innermost named type
        nullable: Whether the outermost type may be null
        is_list: Whether the value is a list
        item_nullable: Whether list items may be null (lists only)
    """

    raw_type: str
    nullable: bool = True
    is_list: bool = False
    item_nullable: bool = True

    @classmethod
    def parse(cls, text: str) -> TypeAnnotation:
        """Parse an annotation string.

        Raises:
            MalformedError: If the annotation is not ``Name``, ``Name!``,
                ``[Name]`` or a non-null variant of those
        """
        match = _ANNOTATION.match(text.strip()) if isinstance(text, str) else None
        if not match:
            raise MalformedError(f"Invalid type annotation '{text}'")
        open_bracket, name, inner_bang, close_bracket, outer_bang = match.groups()
        if bool(open_bracket) != bool(close_bracket):
            raise MalformedError(f"Invalid type annotation '{text}'")
        if open_bracket:
            return cls(
                raw_type=name,
                nullable=not outer_bang,
                is_list=True,
                item_nullable=not inner_bang,
            )
        if outer_bang:
            raise MalformedError(f"Invalid type annotation '{text}'")
        return cls(raw_type=name, nullable=not inner_bang)

    def with_name(self, name: str) -> TypeAnnotation:
        """Same wrapping around a different named type."""
        return replace(self, raw_type=name)

    @property
    def is_reference(self) -> bool:
        """Whether the named type refers to another table."""
        return self.raw_type not in RESERVED_TYPE_NAMES

    def __str__(self) -> str:
        if self.is_list:
            inner = self.raw_type + ("" if self.item_nullable else "!")
            return f"[{inner}]" + ("" if self.nullable else "!")
        return self.raw_type + ("" if self.nullable else "!")


@dataclass(frozen=True)
class ColumnDef:
    """Definition of a single column.

    Attributes:
        type: Storage value type
        nullable: Whether the column accepts null
        meta: Richer external type annotation used verbatim by the query
            surface (for example a reference to another table's type)
    """

    type: ColumnType
    nullable: bool = True
    meta: str | None = None

    @property
    def annotation(self) -> str:
        """External type annotation for this column."""
        if self.meta:
            return self.meta
        return self.type.value + ("" if self.nullable else "!")

    @classmethod
    def from_annotation(cls, annotation: str | TypeAnnotation) -> ColumnDef:
        """Build a column from an external annotation.

        Core scalars, Date and JSON keep their own type; lists and the
        surface-only built-ins are stored as JSON; any other name is a
        reference to another table and is stored as an ID.
        """
        parsed = (
            annotation
            if isinstance(annotation, TypeAnnotation)
            else TypeAnnotation.parse(annotation)
        )

        if parsed.is_list:
            column_type = ColumnType.JSON
        elif parsed.raw_type in (t.value for t in ColumnType):
            column_type = ColumnType.from_str(parsed.raw_type)
        elif parsed.raw_type in RESERVED_TYPE_NAMES:
            column_type = ColumnType.JSON
        else:
            column_type = ColumnType.ID

        return cls(type=column_type, nullable=parsed.nullable, meta=str(parsed))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"type": self.type.value, "nullable": self.nullable}
        if self.meta is not None:
            result["meta"] = self.meta
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnDef:
        """Create from dictionary representation."""
        return cls(
            type=ColumnType.from_str(data["type"]),
            nullable=bool(data.get("nullable", True)),
            meta=data.get("meta"),
        )


ID_COLUMN = ColumnDef(type=ColumnType.ID, nullable=False, meta="ID!")


@dataclass(frozen=True)
class IndexDef:
    """Definition of an index over one or more columns.

    Attributes:
        fields: Indexed column names, in order
        unique: Whether the index enforces uniqueness
    """

    fields: tuple[str, ...]
    unique: bool = False

    def __post_init__(self) -> None:
        """Validate index definition."""
        if not self.fields:
            raise MalformedError("Index must cover at least one column")
        # Accept lists from callers, store a tuple for hashing/equality.
        object.__setattr__(self, "fields", tuple(self.fields))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        return {"fields": list(self.fields), "unique": self.unique}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexDef:
        """Create from dictionary representation."""
        return cls(fields=tuple(data["fields"]), unique=bool(data.get("unique", False)))


@dataclass
class TableSchema:
    """Definition of a table.

    Attributes:
        name: Logical table name (without tenant namespace)
        columns: Column definitions keyed by column name, in declaration order
        indexes: Declared indexes
        version: Schema version, bumped on every effective redefinition
    """

    name: str
    columns: dict[str, ColumnDef] = dataclass_field(default_factory=dict)
    indexes: list[IndexDef] = dataclass_field(default_factory=list)
    version: int = 0

    def validate(self) -> None:
        """Validate names and index references.

        Raises:
            MalformedError: On an invalid name or an index over an unknown column
        """
        validate_identifier(self.name, "table name")
        for column in self.columns:
            validate_identifier(column, "column name")
        for index in self.indexes:
            unknown = [f for f in index.fields if f not in self.columns]
            if unknown:
                raise MalformedError(
                    f"Index on table '{self.name}' references unknown columns: {unknown}"
                )

    def get_column(self, name: str) -> ColumnDef | None:
        """Get a column definition by name."""
        return self.columns.get(name)

    def get_column_names(self) -> list[str]:
        """Get list of all column names."""
        return list(self.columns)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "columns": {k: v.to_dict() for k, v in self.columns.items()},
            "indexes": [i.to_dict() for i in self.indexes],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableSchema:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            columns={k: ColumnDef.from_dict(v) for k, v in data.get("columns", {}).items()},
            indexes=[IndexDef.from_dict(i) for i in data.get("indexes", [])],
            version=int(data.get("version", 0)),
        )


def ensure_id_column(schema: TableSchema) -> TableSchema:
    """Return a copy of the schema that satisfies the id column invariant.

    An "id" column the caller declared as a non-null ID is kept as is
    (including its annotation); otherwise it is replaced by ID_COLUMN.
    A missing "id" column is added first.
    """
    existing = schema.columns.get(ID_COLUMN_NAME)
    if existing is not None and existing.type == ColumnType.ID and not existing.nullable:
        columns = dict(schema.columns)
    elif existing is not None:
        columns = {k: (ID_COLUMN if k == ID_COLUMN_NAME else v) for k, v in schema.columns.items()}
    else:
        columns = {ID_COLUMN_NAME: ID_COLUMN, **schema.columns}

    return TableSchema(
        name=schema.name,
        columns=columns,
        indexes=list(schema.indexes),
        version=schema.version,
    )
