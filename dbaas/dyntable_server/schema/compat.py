"""
Schema comparison for table redefinition.

Redefinition needs three answers from two schemas:
- whether they are structurally identical (then redefinition is a no-op)
- which columns they share (those survive the migration copy)
- what changed (for logging and for callers that want to preview a migration)

Invariants:
    - Equality ignores name and version, only columns and indexes count
    - Column order does not matter, index order does

Example:
    >>> changes = diff_schemas(old, new)
    >>> [str(c) for c in changes]
    ["COLUMN_REMOVED: y", "COLUMN_ADDED: z"]
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from .types import TableSchema


class ChangeKind(Enum):
    """Types of schema changes."""

    COLUMN_ADDED = auto()
    COLUMN_REMOVED = auto()
    COLUMN_TYPE_CHANGED = auto()
    NULLABILITY_CHANGED = auto()
    ANNOTATION_CHANGED = auto()
    INDEX_ADDED = auto()
    INDEX_REMOVED = auto()

    @property
    def loses_data(self) -> bool:
        """Whether applying this change discards stored values."""
        return self in (ChangeKind.COLUMN_REMOVED, ChangeKind.COLUMN_TYPE_CHANGED)


@dataclass(frozen=True)
class SchemaChange:
    """A single difference between two table schemas.

    Attributes:
        kind: What changed
        target: Column name, or comma-joined index fields
        old: Previous value description (if any)
        new: New value description (if any)
    """

    kind: ChangeKind
    target: str
    old: str | None = None
    new: str | None = None

    def __str__(self) -> str:
        if self.old is not None or self.new is not None:
            return f"{self.kind.name}: {self.target} ({self.old} -> {self.new})"
        return f"{self.kind.name}: {self.target}"


def structurally_equal(a: TableSchema, b: TableSchema) -> bool:
    """Whether two schemas have the same columns and indexes."""
    return a.columns == b.columns and list(a.indexes) == list(b.indexes)


def shared_columns(old: TableSchema, new: TableSchema) -> list[str]:
    """Columns present in both schemas, in the old schema's order."""
    return [name for name in old.columns if name in new.columns]


def diff_schemas(old: TableSchema, new: TableSchema) -> list[SchemaChange]:
    """List every difference between two schemas."""
    changes: list[SchemaChange] = []

    for name, column in old.columns.items():
        replacement = new.columns.get(name)
        if replacement is None:
            changes.append(SchemaChange(ChangeKind.COLUMN_REMOVED, name))
            continue
        if replacement.type != column.type:
            changes.append(
                SchemaChange(
                    ChangeKind.COLUMN_TYPE_CHANGED,
                    name,
                    old=column.type.value,
                    new=replacement.type.value,
                )
            )
        if replacement.nullable != column.nullable:
            changes.append(
                SchemaChange(
                    ChangeKind.NULLABILITY_CHANGED,
                    name,
                    old=str(column.nullable),
                    new=str(replacement.nullable),
                )
            )
        if replacement.meta != column.meta:
            changes.append(
                SchemaChange(
                    ChangeKind.ANNOTATION_CHANGED, name, old=column.meta, new=replacement.meta
                )
            )

    for name in new.columns:
        if name not in old.columns:
            changes.append(SchemaChange(ChangeKind.COLUMN_ADDED, name))

    old_indexes = set(old.indexes)
    new_indexes = set(new.indexes)
    for index in old.indexes:
        if index not in new_indexes:
            changes.append(SchemaChange(ChangeKind.INDEX_REMOVED, ", ".join(index.fields)))
    for index in new.indexes:
        if index not in old_indexes:
            changes.append(SchemaChange(ChangeKind.INDEX_ADDED, ", ".join(index.fields)))

    return changes
