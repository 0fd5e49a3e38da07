"""
Schema model for DynTable.

This module provides the runtime table shape:
- Column and index definitions (ColumnType, ColumnDef, IndexDef)
- Table schemas with the id column invariant (TableSchema, ensure_id_column)
- Structural comparison used by redefinition (structurally_equal, diff_schemas)
"""

from .compat import (
    ChangeKind,
    SchemaChange,
    diff_schemas,
    shared_columns,
    structurally_equal,
)
from .types import (
    BUILTIN_TYPES,
    CORE_SCALARS,
    ID_COLUMN,
    ID_COLUMN_NAME,
    RESERVED_TYPE_NAMES,
    ColumnDef,
    ColumnType,
    IndexDef,
    TableSchema,
    TypeAnnotation,
    ensure_id_column,
    validate_identifier,
)

__all__ = [
    # Types
    "ColumnType",
    "ColumnDef",
    "IndexDef",
    "TableSchema",
    "TypeAnnotation",
    "ID_COLUMN",
    "ID_COLUMN_NAME",
    "CORE_SCALARS",
    "BUILTIN_TYPES",
    "RESERVED_TYPE_NAMES",
    "ensure_id_column",
    "validate_identifier",
    # Comparison
    "ChangeKind",
    "SchemaChange",
    "diff_schemas",
    "shared_columns",
    "structurally_equal",
]
