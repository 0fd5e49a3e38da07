"""
In-memory table store over a flat key-value space.

The space is a plain dict keyed by namespaced name: the catalog key maps
table names to serialized schemas and every physical key maps record ids
to encoded rows. Several stores (tenants) may share one space.

Queries are evaluated record by record with resolve_query() on the
comparison view of each row (codec.compare_record), so filters and sort
order agree with the SQLite backend; skip and limit happen in Python
after filtering. Sorted searches break ties by id on both backends.

Invariants:
    - Rows are stored encoded, exactly as the SQLite backend would store
      them, and decoded on every read
    - Migrations build a new row map and only swap it into the space once
      every step has succeeded; batches apply to a copy first
    - A Table handle is bound to the row map it was created over; after a
      drop or redefinition it raises NotFoundError
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from ..codec import compare_record, decode_record, encode_record, storage_order
from ..errors import ConflictError, MalformedError, NotFoundError
from ..query import resolve_query
from ..schema.compat import diff_schemas, shared_columns, structurally_equal
from ..schema.types import ID_COLUMN_NAME, ColumnDef, ColumnType, TableSchema
from .base import (
    BATCH_DEL,
    BATCH_PUT,
    BatchOperation,
    SearchOptions,
    Table,
    TableStore,
    check_projection,
    parse_sort,
)

logger = logging.getLogger(__name__)

_FILL_VALUES = {
    ColumnType.INT: 0,
    ColumnType.FLOAT: 0.0,
}

Rows = dict[str, dict[str, Any]]


def _fill_value(column: ColumnDef) -> Any:
    return _FILL_VALUES.get(column.type, "")


class InMemoryTable(Table):
    """CRUD operations on one table of the key-value space."""

    def __init__(self, space: dict[str, Any], physical: str, schema: TableSchema) -> None:
        super().__init__(schema)
        self._space = space
        self.physical = physical
        self._bound = space.get(physical)

    @property
    def _rows(self) -> Rows:
        rows = self._space.get(self.physical)
        # create/redefine install a new row map; a handle bound to an older one is stale
        if rows is None or rows is not self._bound:
            raise NotFoundError(
                f"Table '{self.name}' was dropped or redefined",
                table=self.name,
            )
        return rows

    def _decode(self, row: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None
        record = decode_record(row, self.schema.columns)
        return {name: record.get(name) for name in self.schema.columns}

    def _check_row(self, rows: Rows, record_id: str, row: Mapping[str, Any]) -> None:
        """Enforce non-null columns and unique indexes on a row about to be stored."""
        for name, column in self.schema.columns.items():
            if not column.nullable and row.get(name) is None:
                raise MalformedError(
                    f"Column '{name}' of table '{self.name}' cannot be null",
                    details={"table": self.name, "column": name},
                )

        for index in self.schema.indexes:
            if not index.unique:
                continue
            key = tuple(row.get(f) for f in index.fields)
            if any(v is None for v in key):
                continue
            for other_id, other in rows.items():
                if other_id != record_id and tuple(other.get(f) for f in index.fields) == key:
                    raise ConflictError(
                        f"Unique index ({', '.join(index.fields)}) of table "
                        f"'{self.name}' already holds {key}"
                    )

    def _check_rows(self, rows: Rows) -> None:
        for record_id, row in rows.items():
            self._check_row(rows, record_id, row)

    def _update(self, rows: Rows, record_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        existing = rows.get(record_id)
        if existing is None:
            raise NotFoundError(
                f"Record '{record_id}' not found in '{self.name}'",
                table=self.name,
                record_id=record_id,
            )
        encoded = encode_record(values, self.schema.columns)
        encoded.pop(ID_COLUMN_NAME, None)
        row = {**existing, **encoded}
        self._check_row(rows, record_id, row)
        rows[record_id] = row
        return row

    async def all(self, filter: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        rows = list(self._rows.values())
        if not filter:
            return [self._decode(row) for row in rows]

        unknown = [k for k in filter if k not in self.schema.columns]
        if unknown:
            raise MalformedError(f"Unknown filter columns for '{self.name}': {unknown}")
        columns = {k: self.schema.columns[k] for k in filter}
        expected = compare_record(encode_record(filter, columns), columns)
        return [
            self._decode(row)
            for row in rows
            if compare_record(row, columns) == expected
        ]

    async def search(self, options: SearchOptions | Mapping[str, Any]) -> list[dict[str, Any]]:
        options = SearchOptions.from_dict(options)
        columns = self.schema.get_column_names()
        types = {name: column.type for name, column in self.schema.columns.items()}

        projection = check_projection(options.projection, columns)
        order = parse_sort(options.sort, columns)

        # Filtering and sorting use the comparison view of each stored row
        matched: list[tuple[dict[str, Any], dict[str, Any]]] = []
        for row in self._rows.values():
            view = compare_record(row, self.schema.columns)
            if resolve_query(options.query, view, columns, types):
                matched.append((view, row))

        if order and ID_COLUMN_NAME not in (name for name, _ in order):
            order.append((ID_COLUMN_NAME, False))
        for name, descending in reversed(order):
            try:
                matched.sort(key=lambda m: storage_order(m[0][name]), reverse=descending)
            except TypeError as exc:
                raise MalformedError(f"Cannot sort '{self.name}' by mixed values of '{name}'") from exc

        start = options.skip or 0
        end = start + options.limit if options.limit is not None else None
        records = [self._decode(row) for _, row in matched[start:end]]

        if projection:
            return [{p: r[p] for p in projection} for r in records]
        return records

    async def one(self, record_id: str) -> dict[str, Any] | None:
        return self._decode(self._rows.get(record_id))

    async def add(self, record: Mapping[str, Any]) -> dict[str, Any]:
        record_id = str(uuid.uuid4())
        row = {name: None for name in self.schema.columns}
        row.update(encode_record(record, self.schema.columns))
        row[ID_COLUMN_NAME] = record_id

        rows = self._rows
        self._check_row(rows, record_id, row)
        rows[record_id] = row

        logger.debug(
            "Added record",
            extra={"table": self.name, "id": record_id, "version": self.schema.version},
        )
        return self._decode(row)

    async def put(self, record_id: str, record: Mapping[str, Any]) -> dict[str, Any]:
        row = self._update(self._rows, record_id, record)
        logger.debug(
            "Updated record",
            extra={"table": self.name, "id": record_id, "version": self.schema.version},
        )
        return self._decode(row)

    async def delete(self, record_id: str) -> None:
        self._rows.pop(record_id, None)
        logger.debug("Deleted record", extra={"table": self.name, "id": record_id})

    async def delete_many(self, record_ids: Sequence[str]) -> None:
        rows = self._rows
        for record_id in record_ids:
            rows.pop(record_id, None)
        logger.debug("Deleted records", extra={"table": self.name, "count": len(record_ids)})

    async def batch(
        self, operations: Sequence[BatchOperation | Mapping[str, Any]]
    ) -> list[BatchOperation]:
        ops = [BatchOperation.from_dict(op) for op in operations]
        if not ops:
            return []

        rows = dict(self._rows)
        applied: list[BatchOperation] = []
        for op in ops:
            if op.type == BATCH_PUT:
                row = self._update(rows, op.id, op.value or {})
                applied.append(BatchOperation(op.type, op.id, self._decode(row)))
            elif op.type == BATCH_DEL:
                rows.pop(op.id, None)
                applied.append(BatchOperation(op.type, op.id))
            else:
                logger.debug(
                    f"Skipping batch operation of unknown type '{op.type}'",
                    extra={"table": self.name, "id": op.id},
                )

        current = self._rows
        current.clear()
        current.update(rows)
        logger.debug(
            "Applied batch",
            extra={"table": self.name, "count": len(applied), "version": self.schema.version},
        )
        return applied


class InMemoryTableStore(TableStore):
    """Table store for one tenant namespace in a flat key-value space.

    Args:
        prefix: Store-level prefix
        tenant: Tenant namespace identifier
        space: Shared key-value space; a private dict when omitted
    """

    def __init__(
        self,
        prefix: str = "dyn",
        tenant: str = "default",
        space: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(prefix, tenant)
        self._space: dict[str, Any] = space if space is not None else {}
        self._lock = asyncio.Lock()

    @property
    def _catalog(self) -> dict[str, dict[str, Any]]:
        return self._space.setdefault(self.catalog_name, {})

    def _select_schema(self, name: str) -> TableSchema | None:
        data = self._catalog.get(name)
        return TableSchema.from_dict(data) if data is not None else None

    async def init(self) -> None:
        self._space.setdefault(self.catalog_name, {})
        logger.info(f"Initialized table catalog: {self.catalog_name}")

    async def create(self, schema: TableSchema) -> TableSchema:
        created = self.prepare_schema(schema, version=0)
        async with self._lock:
            if created.name in self._catalog:
                raise ConflictError(
                    f"Table '{created.name}' already exists",
                    details={"table": created.name},
                )
            self._space[self.physical_name(created.name)] = {}
            self._catalog[created.name] = created.to_dict()

        logger.info(
            f"Created table: {created.name}",
            extra={"tenant": self.tenant, "table": created.name, "version": created.version},
        )
        return created

    async def define(self, name: str) -> TableSchema | None:
        return self._select_schema(name)

    async def list(self, prefix: str | None = None) -> list[TableSchema]:
        names = sorted(n for n in self._catalog if not prefix or n.startswith(prefix))
        return [TableSchema.from_dict(self._catalog[n]) for n in names]

    def _migrate(self, old: TableSchema, new: TableSchema, rows: Rows) -> Rows | None:
        """Copy shared columns into rows shaped by the new schema.

        Returns:
            None if the schemas share no columns besides id
        """
        shared = shared_columns(old, new)
        if not [c for c in shared if c != ID_COLUMN_NAME]:
            return None

        migrated: Rows = {}
        for record_id, row in rows.items():
            copied: dict[str, Any] = {}
            for name, column in new.columns.items():
                value = row.get(name) if name in old.columns else None
                if value is None and not column.nullable and name != ID_COLUMN_NAME:
                    value = _fill_value(column)
                copied[name] = value
            migrated[record_id] = copied
        return migrated

    async def redefine(self, name: str, schema: TableSchema) -> TableSchema:
        target = self.prepare_schema(schema, name=name)
        physical = self.physical_name(name)

        async with self._lock:
            current = self._select_schema(name)
            if current is None:
                result = self.prepare_schema(target, version=0)
                self._space[physical] = {}
                self._catalog[name] = result.to_dict()
                logger.info(
                    f"Created table: {name}",
                    extra={"tenant": self.tenant, "table": name, "version": result.version},
                )
                return result
            if structurally_equal(current, target):
                return current

            result = self.prepare_schema(target, version=current.version + 1)
            migrated = self._migrate(current, result, self._space.get(physical, {}))
            if migrated is None:
                logger.warning(
                    f"Redefining table '{name}' with no shared columns, "
                    "existing records are discarded",
                    extra={"tenant": self.tenant, "table": name},
                )
                migrated = {}
            InMemoryTable(self._space, physical, result)._check_rows(migrated)

            self._space[physical] = migrated
            self._catalog[name] = result.to_dict()

        logger.info(
            f"Redefined table: {name}",
            extra={
                "tenant": self.tenant,
                "table": name,
                "old_version": current.version,
                "version": result.version,
                "changes": [str(c) for c in diff_schemas(current, result)],
            },
        )
        return result

    def _drop(self, name: str) -> None:
        self._space.pop(self.physical_name(name), None)
        self._catalog.pop(name, None)

    async def drop(self, name: str) -> None:
        async with self._lock:
            if name not in self._catalog:
                raise NotFoundError(f"Table '{name}' not found", table=name)
            self._drop(name)
        logger.info(f"Dropped table: {name}", extra={"tenant": self.tenant, "table": name})

    async def drop_many(self, names: Sequence[str]) -> None:
        async with self._lock:
            dropped = [n for n in names if n in self._catalog]
            for name in dropped:
                self._drop(name)
        logger.info(f"Dropped {len(dropped)} tables", extra={"tenant": self.tenant, "tables": dropped})

    async def drop_prefixed(self, prefix: str) -> None:
        names = [schema.name for schema in await self.list(prefix)]
        await self.drop_many(names)

    async def table(self, name: str) -> InMemoryTable:
        schema = self._select_schema(name)
        if schema is None:
            raise NotFoundError(f"Table '{name}' not found", table=name)
        return InMemoryTable(self._space, self.physical_name(name), schema)
