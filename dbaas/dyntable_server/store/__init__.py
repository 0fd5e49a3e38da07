"""
Table storage backends.

Two interchangeable backends implement the TableStore/Table interfaces:
- SQLite: compiles queries to parameterized SQL predicates
- In-memory: a flat key-value space evaluated record by record

Invariants:
    - Schemas returned to callers never carry the tenant namespace
    - Migrations and batches are all-or-nothing on both backends

How to change safely:
    - New backends must implement TableStore and Table
    - Run the shared backend contract tests against every backend
"""

from .base import (
    BatchOperation,
    SearchOptions,
    StoreFactory,
    Table,
    TableStore,
    open_store,
)
from .memory import InMemoryTable, InMemoryTableStore
from .sqlite import SQLiteTable, SQLiteTableStore, connect

__all__ = [
    # Interfaces and types
    "Table",
    "TableStore",
    "SearchOptions",
    "BatchOperation",
    # Factory
    "StoreFactory",
    "open_store",
    # Implementations
    "SQLiteTable",
    "SQLiteTableStore",
    "connect",
    "InMemoryTable",
    "InMemoryTableStore",
]
