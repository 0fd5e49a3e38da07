"""
Query-surface generator.

Derives a GraphQL document (object, input and batch types plus
query/mutation/subscription root fields) from table schemas, and
reflects externally declared types back into table schemas.
"""

from .builtins import BUILTIN_SDL
from .schema import (
    DeclaredType,
    SurfaceContext,
    declare_types,
    declared_type_to_schema,
    execute,
    make_schema,
)
from .table import ParsedField, TableSurface

__all__ = [
    "BUILTIN_SDL",
    "DeclaredType",
    "ParsedField",
    "SurfaceContext",
    "TableSurface",
    "declare_types",
    "declared_type_to_schema",
    "execute",
    "make_schema",
]
