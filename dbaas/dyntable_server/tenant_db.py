"""
Tenant catalog layer.

TenantDb maps a (user, scope) namespace to a TableStore, registers tables
from type declarations and executes query-surface documents against the
whole catalog of a namespace. It owns the loader that resolves reference
fields: a lookup of the table by type name followed by one(id).

Invariants:
    - The tenant id of a namespace is "user" or "user_scope"; characters
      outside [A-Za-z0-9_] are replaced by "_"
    - One TableStore instance per tenant id for the life of a TenantDb

How to change safely:
    - TableDescription is the public shape of a schema; keep to_dict() stable
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import NotFoundError
from .schema.types import TableSchema
from .store.base import Table, TableStore
from .surface import (
    SurfaceContext,
    TableSurface,
    declare_types,
    declared_type_to_schema,
    execute,
    make_schema,
)

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


@dataclass
class TableDescription:
    """Externally visible description of a tenant table.

    Attributes:
        user: Owning user
        scope: Scope within the user's namespace ("" for none)
        name: Logical table name
        version: Schema version
        fields: {"key", "type"} per column, type being its annotation
    """

    user: str
    scope: str
    name: str
    version: int = 0
    fields: list[dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_schema(cls, user: str, scope: str, schema: TableSchema) -> TableDescription:
        return cls(
            user=user,
            scope=scope,
            name=schema.name,
            version=schema.version,
            fields=[{"key": k, "type": c.annotation} for k, c in schema.columns.items()],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "user": self.user,
            "scope": self.scope,
            "name": self.name,
            "version": self.version,
            "fields": [dict(f) for f in self.fields],
        }


class TenantDb:
    """Per-tenant table registry and query entry point.

    Args:
        store_factory: Returns the TableStore of a tenant id
        get_user: Resolves a user id to the identity placed in the
            resolver context; the raw id is used when omitted
        debug: Include exception detail in query errors

    Example:
        >>> db = TenantDb(StoreFactory(StorageConfig(backend=StorageBackend.MEMORY)))
        >>> await db.register_schemas("alice", "", "type Note { id: ID! text: String }")
        >>> await db.query("alice", "", 'mutation { addNote(input: {text: "hi"}) { id } }')
    """

    def __init__(
        self,
        store_factory: Callable[[str], TableStore],
        get_user: Callable[[str], Awaitable[Any]] | None = None,
        debug: bool = False,
    ) -> None:
        self._store_factory = store_factory
        self._get_user = get_user
        self.debug = debug
        self._stores: dict[str, TableStore] = {}

    @staticmethod
    def tenant_id(user: str, scope: str | None = None) -> str:
        """Tenant id of a (user, scope) namespace."""
        return "_".join(_UNSAFE.sub("_", part) for part in (user, scope) if part)

    async def store(self, user: str, scope: str | None = None) -> TableStore:
        """Get the initialized table store of a namespace."""
        tenant = self.tenant_id(user, scope)
        store = self._stores.get(tenant)
        if store is None:
            store = self._store_factory(tenant)
            await store.init()
            self._stores[tenant] = store
        return store

    async def get_schema(self, user: str, scope: str, name: str) -> TableDescription | None:
        schema = await (await self.store(user, scope)).define(name)
        if schema is None:
            return None
        return TableDescription.from_schema(user, scope, schema)

    async def get_schemas(self, user: str, scope: str) -> list[TableDescription]:
        schemas = await (await self.store(user, scope)).list()
        return [TableDescription.from_schema(user, scope, s) for s in schemas]

    async def register_schemas(
        self, user: str, scope: str, text: str, stubs: str = ""
    ) -> list[TableDescription]:
        """Create one table per object type declared in text.

        Raises:
            MalformedError: On an invalid declaration
            ConflictError: If a declared table already exists
        """
        declared = declare_types(text, stubs)
        store = await self.store(user, scope)

        result = []
        for declared_type in declared:
            schema = await store.create(declared_type_to_schema(declared_type))
            result.append(TableDescription.from_schema(user, scope, schema))
        return result

    async def replace_schema(
        self, user: str, scope: str, name: str, text: str, stubs: str = ""
    ) -> TableDescription:
        """Redefine table name from its declaration in text.

        Raises:
            NotFoundError: If text does not declare a type called name
        """
        declared = next((d for d in declare_types(text, stubs) if d.name == name), None)
        if declared is None:
            raise NotFoundError(f"No type named '{name}' is declared", table=name)

        store = await self.store(user, scope)
        schema = await store.redefine(name, declared_type_to_schema(declared))
        return TableDescription.from_schema(user, scope, schema)

    async def drop_schema(self, user: str, scope: str, name: str) -> None:
        await (await self.store(user, scope)).drop(name)

    async def drop_many_schemas(self, user: str, scope: str, names: Sequence[str]) -> None:
        await (await self.store(user, scope)).drop_many(names)

    async def drop_all(self, user: str, scope: str) -> None:
        """Drop every table of a namespace."""
        await (await self.store(user, scope)).drop_prefixed("")

    async def query(
        self,
        user: str,
        scope: str,
        document: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a query-surface document against a namespace's tables.

        Returns:
            {"data": ..., "errors": [...]} as produced by execute()
        """
        store = await self.store(user, scope)
        tables: dict[str, Table] = {}
        for schema in await store.list():
            tables[schema.name] = await store.table(schema.name)

        async def load(type_name: str, record_id: Any) -> dict[str, Any] | None:
            table = tables.get(type_name)
            if table is None:
                return None
            return await table.one(str(record_id))

        identity = await self._get_user(user) if self._get_user else user
        schema = make_schema([TableSurface(t.schema, t) for t in tables.values()])
        return await execute(
            schema,
            document,
            SurfaceContext(user=identity, load=load),
            variables=variables,
            debug=self.debug,
        )
