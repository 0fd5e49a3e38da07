"""
Base interfaces for table storage backends.

A TableStore is the tenant-scoped catalog of table schemas and the
migration engine that creates, redefines and drops tables. A Table is
the typed CRUD engine bound to one schema. Relational and flat key-value
backends implement both independently; which query evaluator runs is a
property of the backend, not of the caller.

Invariants:
    - Physical names are prefix, tenant and table name joined by the
      backend's separator; schemas handed to callers never include them
    - redefine() is all-or-nothing: on failure the previous table and its
      catalog entry are unchanged
    - batch() is all-or-nothing and applies operations in order

How to change safely:
    - Interface changes require updating every backend
    - Keep SearchOptions/BatchOperation from_dict() tolerant of extra keys
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import StorageBackend, StorageConfig
from ..errors import MalformedError
from ..schema.types import TableSchema, ensure_id_column, validate_identifier

BATCH_PUT = "put"
BATCH_DEL = "del"

# Tenant ids only ever follow the prefix, so a leading digit is fine
_TENANT = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class SearchOptions:
    """Options for Table.search().

    Attributes:
        skip: Number of matching records to skip
        limit: Maximum number of records to return
        query: Query tree filtering the records
        sort: Whitespace separated tokens "[+-]field"
        projection: Columns to return (all when empty)
    """

    skip: int | None = None
    limit: int | None = None
    query: Mapping[str, Any] | None = None
    sort: str | None = None
    projection: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Validate search options."""
        for name in ("skip", "limit"):
            value = getattr(self, name)
            if value is not None and (
                not isinstance(value, int) or isinstance(value, bool) or value < 0
            ):
                raise MalformedError(f"{name} must be a non-negative integer, got {value!r}")
        if self.query is not None and not isinstance(self.query, Mapping):
            raise MalformedError("query must be an object")
        object.__setattr__(self, "projection", tuple(self.projection or ()))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SearchOptions:
        """Create from a plain mapping (HTTP body or GraphQL input)."""
        if data is None:
            return cls()
        if isinstance(data, SearchOptions):
            return data
        return cls(
            skip=data.get("skip"),
            limit=data.get("limit"),
            query=data.get("query"),
            sort=data.get("sort"),
            projection=tuple(data.get("projection") or ()),
        )


@dataclass(frozen=True)
class BatchOperation:
    """One operation of a Table.batch() call.

    Attributes:
        type: "put" or "del"; anything else is skipped
        id: Target record id
        value: Partial record for "put"
    """

    type: str
    id: str
    value: Mapping[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | BatchOperation) -> BatchOperation:
        """Create from a mapping. "key" is accepted as an alias of "id"."""
        if isinstance(data, BatchOperation):
            return data
        record_id = data.get("id", data.get("key"))
        if record_id is None:
            raise MalformedError("Batch operation requires an id")
        return cls(type=str(data.get("type")), id=str(record_id), value=data.get("value"))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {"type": self.type, "id": self.id, "value": self.value}


def parse_sort(sort: str | None, columns: Sequence[str]) -> list[tuple[str, bool]]:
    """Parse sort tokens into (column, descending) pairs.

    Raises:
        MalformedError: If a token is not "[+-]identifier" or names an
            unknown column
    """
    if not sort:
        return []
    result: list[tuple[str, bool]] = []
    for token in sort.split():
        descending = token.startswith("-")
        name = token[1:] if token[:1] in ("+", "-") else token
        try:
            validate_identifier(name, "sort field")
        except MalformedError:
            raise MalformedError(f"Invalid sort token '{token}'") from None
        if name not in columns:
            raise MalformedError(f"Cannot sort by unknown column '{name}'")
        result.append((name, descending))
    return result


def check_projection(projection: Sequence[str], columns: Sequence[str]) -> list[str]:
    """Validate projected column names."""
    unknown = [p for p in projection if p not in columns]
    if unknown:
        raise MalformedError(f"Cannot project unknown columns: {unknown}")
    return list(projection)


class Table(ABC):
    """Typed CRUD operations on one table.

    Records are plain dicts keyed by column name. Values are encoded on
    write and decoded on read according to the column types of the schema
    the table was bound to.
    """

    def __init__(self, schema: TableSchema) -> None:
        self.schema = schema

    @property
    def name(self) -> str:
        """Logical table name."""
        return self.schema.name

    @abstractmethod
    async def all(self, filter: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """List every record, or those exactly matching the filter."""
        ...

    @abstractmethod
    async def search(self, options: SearchOptions | Mapping[str, Any]) -> list[dict[str, Any]]:
        """Filter, sort, paginate and project records."""
        ...

    @abstractmethod
    async def one(self, record_id: str) -> dict[str, Any] | None:
        """Get a record by id, or None."""
        ...

    @abstractmethod
    async def add(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a record with a generated id and return it."""
        ...

    @abstractmethod
    async def put(self, record_id: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Partially update a record and return it.

        Raises:
            NotFoundError: If no record has this id
        """
        ...

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Delete a record. Deleting a missing id is a no-op."""
        ...

    @abstractmethod
    async def delete_many(self, record_ids: Sequence[str]) -> None:
        """Delete several records at once."""
        ...

    @abstractmethod
    async def batch(
        self, operations: Sequence[BatchOperation | Mapping[str, Any]]
    ) -> list[BatchOperation]:
        """Apply put/del operations in order as one atomic unit.

        Returns:
            The applied operations; puts carry the updated record

        Raises:
            NotFoundError: If a put targets a missing id (nothing is applied)
        """
        ...


class TableStore(ABC):
    """Tenant-scoped catalog of table schemas.

    Attributes:
        separator: Joins prefix, tenant and table names
        prefix: Store-level prefix
        tenant: Tenant namespace identifier
    """

    separator: str = "_"

    def __init__(self, prefix: str, tenant: str) -> None:
        self.prefix = validate_identifier(prefix, "prefix")
        if not isinstance(tenant, str) or not _TENANT.match(tenant):
            raise MalformedError(
                f"Invalid tenant '{tenant}': must match [A-Za-z0-9_]+", details={"tenant": tenant}
            )
        self.tenant = tenant

    def physical_name(self, table: str) -> str:
        """Namespaced storage name of a logical table."""
        return self.separator.join((self.prefix, self.tenant, table))

    @property
    def catalog_name(self) -> str:
        """Storage name of this store's schema catalog."""
        return self.separator.join((self.prefix, self.tenant, "", "catalog"))

    def prepare_schema(
        self,
        schema: TableSchema,
        name: str | None = None,
        version: int | None = None,
    ) -> TableSchema:
        """Validate a caller schema and apply the id column invariant.

        Args:
            schema: Schema as supplied by the caller
            name: Overrides schema.name
            version: Overrides schema.version

        Raises:
            MalformedError: On invalid names; table names may not start with
                "_", which is reserved for the catalog and shadow tables
        """
        prepared = ensure_id_column(schema)
        if name is not None:
            prepared.name = name
        if version is not None:
            prepared.version = version
        prepared.validate()
        if prepared.name.startswith("_"):
            raise MalformedError(
                f"Invalid table name '{prepared.name}': leading underscore is reserved"
            )
        return prepared

    @abstractmethod
    async def init(self) -> None:
        """Ensure the catalog exists. Idempotent."""
        ...

    @abstractmethod
    async def create(self, schema: TableSchema) -> TableSchema:
        """Create a table.

        Raises:
            ConflictError: If the table already exists
        """
        ...

    @abstractmethod
    async def define(self, name: str) -> TableSchema | None:
        """Get the current schema of a table, or None."""
        ...

    @abstractmethod
    async def list(self, prefix: str | None = None) -> list[TableSchema]:
        """List schemas, optionally only names starting with prefix."""
        ...

    @abstractmethod
    async def redefine(self, name: str, schema: TableSchema) -> TableSchema:
        """Migrate a table to a new schema, creating it if missing."""
        ...

    @abstractmethod
    async def drop(self, name: str) -> None:
        """Drop a table and its catalog entry.

        Raises:
            NotFoundError: If the table does not exist
        """
        ...

    @abstractmethod
    async def drop_many(self, names: Sequence[str]) -> None:
        """Drop several tables atomically. Missing names are ignored."""
        ...

    @abstractmethod
    async def drop_prefixed(self, prefix: str) -> None:
        """Drop every table whose name starts with prefix."""
        ...

    @abstractmethod
    async def table(self, name: str) -> Table:
        """Get a Table bound to the current schema.

        Raises:
            NotFoundError: If the table does not exist
        """
        ...


class StoreFactory:
    """Create per-tenant table stores over one shared backend resource.

    A SQLite backend shares a single connection between tenants; an
    in-memory backend shares a single key-value space.

    Args:
        config: Storage configuration
    """

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self._resource: Any = None

    def _open_resource(self) -> Any:
        from .sqlite import connect

        if self.config.backend == StorageBackend.SQLITE:
            return connect(
                self.config.db_path,
                wal_mode=self.config.wal_mode,
                busy_timeout_ms=self.config.busy_timeout_ms,
            )
        if self.config.backend == StorageBackend.MEMORY:
            return {}
        raise ValueError(f"Unsupported storage backend: {self.config.backend}")

    def __call__(self, tenant: str) -> TableStore:
        """Get the table store of a tenant namespace."""
        from .memory import InMemoryTableStore
        from .sqlite import SQLiteTableStore

        if self._resource is None:
            self._resource = self._open_resource()
        if self.config.backend == StorageBackend.SQLITE:
            return SQLiteTableStore(self._resource, self.config.table_prefix, tenant)
        return InMemoryTableStore(self.config.table_prefix, tenant, space=self._resource)

    def close(self) -> None:
        """Release the shared resource."""
        if self._resource is not None and self.config.backend == StorageBackend.SQLITE:
            self._resource.close()
        self._resource = None


async def open_store(config: StorageConfig, tenant: str) -> TableStore:
    """Open and initialize a single tenant's table store from configuration.

    Raises:
        ValueError: If the backend is not supported
    """
    store = StoreFactory(config)(tenant)
    await store.init()
    return store
