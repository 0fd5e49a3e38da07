"""
SQLite table store and table.

Every tenant namespace lives in one SQLite database shared with other
namespaces; isolation is purely by physical name (prefix_tenant_table).
The catalog of a namespace is the table prefix_tenant__catalog with one
row per logical table: name, columns JSON, indexes JSON and version.

Invariants:
    - All writes run in explicit BEGIN IMMEDIATE / COMMIT transactions on
      an autocommit connection; nothing awaits between BEGIN and COMMIT
    - redefine() builds the new table as a shadow table ("_" + physical),
      copies shared columns, drops the live table, renames the shadow and
      bumps the catalog version, all in one transaction
    - Index names carry the schema version so the shadow's indexes never
      collide with the live table's

How to change safely:
    - Identifiers are validated before they are quoted into DDL; keep it so
    - Catalog columns are persisted as TableSchema.to_dict() fragments
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..codec import decode_record, encode_record
from ..errors import (
    ConflictError,
    InternalError,
    MalformedError,
    NotFoundError,
)
from ..query import compile_query
from ..schema.compat import diff_schemas, shared_columns, structurally_equal
from ..schema.types import (
    ID_COLUMN_NAME,
    ColumnDef,
    ColumnType,
    IndexDef,
    TableSchema,
)
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

_SQL_TYPES = {
    ColumnType.INT: "INTEGER",
    ColumnType.FLOAT: "REAL",
}

_SQL_DEFAULTS = {
    ColumnType.INT: "0",
    ColumnType.FLOAT: "0.0",
}


def connect(
    path: str | Path,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> sqlite3.Connection:
    """Open a connection suitable for SQLiteTableStore.

    Args:
        path: Database file path, or ":memory:"
        wal_mode: Enable SQLite WAL mode (file databases only)
        busy_timeout_ms: SQLite busy timeout

    Returns:
        Autocommit connection returning sqlite3.Row rows
    """
    path = str(path)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        path,
        timeout=busy_timeout_ms / 1000.0,
        isolation_level=None,  # Autocommit by default, explicit transactions
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    if wal_mode and path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def _quote(name: str) -> str:
    return f'"{name}"'


def _column_sql(name: str, column: ColumnDef) -> str:
    if name == ID_COLUMN_NAME:
        return f"{_quote(name)} TEXT PRIMARY KEY NOT NULL"
    sql = f"{_quote(name)} {_SQL_TYPES.get(column.type, 'TEXT')}"
    if not column.nullable:
        sql += " NOT NULL"
    return sql


def _fill_sql(column: ColumnDef) -> str:
    """Literal used for rows that have no value for a non-nullable column."""
    return _SQL_DEFAULTS.get(column.type, "''")


@contextmanager
def _transaction(conn: sqlite3.Connection, action: str) -> Iterator[sqlite3.Connection]:
    """Run a block in a write transaction, mapping storage failures.

    IntegrityError becomes ConflictError (unique violations) or
    MalformedError (anything else the record broke); any other
    sqlite3.Error becomes an opaque InternalError.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.execute("COMMIT")
    except sqlite3.IntegrityError as exc:
        conn.execute("ROLLBACK")
        if "UNIQUE" in str(exc):
            raise ConflictError(f"{action} violates a unique constraint: {exc}") from exc
        raise MalformedError(f"{action} violates a table constraint: {exc}") from exc
    except sqlite3.Error as exc:
        conn.execute("ROLLBACK")
        logger.error(f"{action} failed, rolled back: {exc}", exc_info=True)
        raise InternalError(f"{action} failed") from exc
    except Exception:
        conn.execute("ROLLBACK")
        raise


class SQLiteTable(Table):
    """CRUD operations on one physical SQLite table."""

    def __init__(self, connection: sqlite3.Connection, physical: str, schema: TableSchema) -> None:
        super().__init__(schema)
        self._conn = connection
        self.physical = physical

    def _decode(self, row: sqlite3.Row | None) -> dict[str, Any] | None:
        record = decode_record(row, self.schema.columns)
        if record is None:
            return None
        return {name: record.get(name) for name in self.schema.columns}

    def _select_one(self, record_id: str) -> sqlite3.Row | None:
        cursor = self._conn.execute(
            f"SELECT * FROM {_quote(self.physical)} WHERE {_quote(ID_COLUMN_NAME)} = ?",
            (record_id,),
        )
        rows = cursor.fetchall()
        if len(rows) > 1:
            raise ConflictError(
                f"Expected one record with id '{record_id}' in '{self.name}', found {len(rows)}"
            )
        return rows[0] if rows else None

    def _update(self, record_id: str, values: Mapping[str, Any]) -> sqlite3.Row:
        encoded = encode_record(values, self.schema.columns)
        encoded.pop(ID_COLUMN_NAME, None)
        if encoded:
            assignments = ", ".join(f"{_quote(k)} = ?" for k in encoded)
            cursor = self._conn.execute(
                f"UPDATE {_quote(self.physical)} SET {assignments} "
                f"WHERE {_quote(ID_COLUMN_NAME)} = ?",
                (*encoded.values(), record_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Record '{record_id}' not found in '{self.name}'",
                    table=self.name,
                    record_id=record_id,
                )
        row = self._select_one(record_id)
        if row is None:
            raise NotFoundError(
                f"Record '{record_id}' not found in '{self.name}'",
                table=self.name,
                record_id=record_id,
            )
        return row

    async def all(self, filter: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {_quote(self.physical)}"
        params: list[Any] = []
        if filter:
            unknown = [k for k in filter if k not in self.schema.columns]
            if unknown:
                raise MalformedError(f"Unknown filter columns for '{self.name}': {unknown}")
            encoded = encode_record(filter, self.schema.columns)
            clauses = []
            for key, value in encoded.items():
                if value is None:
                    clauses.append(f"{_quote(key)} IS NULL")
                else:
                    clauses.append(f"{_quote(key)} = ?")
                    params.append(value)
            sql += " WHERE " + " AND ".join(clauses)

        rows = self._conn.execute(sql, params).fetchall()
        return [self._decode(row) for row in rows]

    async def search(self, options: SearchOptions | Mapping[str, Any]) -> list[dict[str, Any]]:
        options = SearchOptions.from_dict(options)
        columns = self.schema.get_column_names()

        projection = check_projection(options.projection, columns)
        selected = ", ".join(_quote(p) for p in projection) if projection else "*"
        predicate, params = compile_query(options.query, columns)

        sql = f"SELECT {selected} FROM {_quote(self.physical)}"
        if predicate:
            sql += f" WHERE {predicate}"

        order = parse_sort(options.sort, columns)
        if order and ID_COLUMN_NAME not in (name for name, _ in order):
            order.append((ID_COLUMN_NAME, False))
        if order:
            sql += " ORDER BY " + ", ".join(
                f"{_quote(name)} {'DESC' if descending else 'ASC'}" for name, descending in order
            )

        if options.limit is not None:
            sql += " LIMIT ?"
            params.append(options.limit)
        elif options.skip:
            sql += " LIMIT -1"
        if options.skip:
            sql += " OFFSET ?"
            params.append(options.skip)

        rows = self._conn.execute(sql, params).fetchall()
        if projection:
            return [decode_record(row, self.schema.columns) for row in rows]
        return [self._decode(row) for row in rows]

    async def one(self, record_id: str) -> dict[str, Any] | None:
        return self._decode(self._select_one(record_id))

    async def add(self, record: Mapping[str, Any]) -> dict[str, Any]:
        record_id = str(uuid.uuid4())
        encoded = encode_record(record, self.schema.columns)
        encoded[ID_COLUMN_NAME] = record_id

        names = ", ".join(_quote(k) for k in encoded)
        placeholders = ", ".join("?" for _ in encoded)
        with _transaction(self._conn, f"Insert into '{self.name}'") as conn:
            conn.execute(
                f"INSERT INTO {_quote(self.physical)} ({names}) VALUES ({placeholders})",
                list(encoded.values()),
            )
            row = self._select_one(record_id)

        logger.debug(
            "Added record",
            extra={"table": self.name, "id": record_id, "version": self.schema.version},
        )
        return self._decode(row)

    async def put(self, record_id: str, record: Mapping[str, Any]) -> dict[str, Any]:
        with _transaction(self._conn, f"Update of '{self.name}'"):
            row = self._update(record_id, record)

        logger.debug(
            "Updated record",
            extra={"table": self.name, "id": record_id, "version": self.schema.version},
        )
        return self._decode(row)

    async def delete(self, record_id: str) -> None:
        self._conn.execute(
            f"DELETE FROM {_quote(self.physical)} WHERE {_quote(ID_COLUMN_NAME)} = ?",
            (record_id,),
        )
        logger.debug("Deleted record", extra={"table": self.name, "id": record_id})

    async def delete_many(self, record_ids: Sequence[str]) -> None:
        if not record_ids:
            return
        placeholders = ", ".join("?" for _ in record_ids)
        with _transaction(self._conn, f"Delete from '{self.name}'") as conn:
            conn.execute(
                f"DELETE FROM {_quote(self.physical)} "
                f"WHERE {_quote(ID_COLUMN_NAME)} IN ({placeholders})",
                list(record_ids),
            )
        logger.debug("Deleted records", extra={"table": self.name, "count": len(record_ids)})

    async def batch(
        self, operations: Sequence[BatchOperation | Mapping[str, Any]]
    ) -> list[BatchOperation]:
        ops = [BatchOperation.from_dict(op) for op in operations]
        if not ops:
            return []

        applied: list[BatchOperation] = []
        with _transaction(self._conn, f"Batch on '{self.name}'") as conn:
            for op in ops:
                if op.type == BATCH_PUT:
                    row = self._update(op.id, op.value or {})
                    applied.append(BatchOperation(op.type, op.id, self._decode(row)))
                elif op.type == BATCH_DEL:
                    conn.execute(
                        f"DELETE FROM {_quote(self.physical)} "
                        f"WHERE {_quote(ID_COLUMN_NAME)} = ?",
                        (op.id,),
                    )
                    applied.append(BatchOperation(op.type, op.id))
                else:
                    logger.debug(
                        f"Skipping batch operation of unknown type '{op.type}'",
                        extra={"table": self.name, "id": op.id},
                    )

        logger.debug(
            "Applied batch",
            extra={"table": self.name, "count": len(applied), "version": self.schema.version},
        )
        return applied


class SQLiteTableStore(TableStore):
    """Table store for one tenant namespace in a SQLite database.

    Example:
        >>> store = SQLiteTableStore(connect(":memory:"), prefix="dyn", tenant="alice")
        >>> await store.init()
        >>> await store.create(TableSchema(name="Note", columns={...}))
        >>> notes = await store.table("Note")
    """

    def __init__(self, connection: sqlite3.Connection, prefix: str = "dyn", tenant: str = "default") -> None:
        super().__init__(prefix, tenant)
        self._conn = connection
        self._lock = asyncio.Lock()
        self._initialized = False

    def _ensure_catalog(self) -> None:
        if self._initialized:
            return
        self._conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {_quote(self.catalog_name)} (
                name TEXT PRIMARY KEY NOT NULL,
                columns TEXT NOT NULL DEFAULT '{{}}',
                indexes TEXT NOT NULL DEFAULT '[]',
                version INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        self._initialized = True

    @staticmethod
    def _schema_from_row(row: sqlite3.Row) -> TableSchema:
        return TableSchema(
            name=row["name"],
            columns={k: ColumnDef.from_dict(v) for k, v in json.loads(row["columns"]).items()},
            indexes=[IndexDef.from_dict(i) for i in json.loads(row["indexes"])],
            version=row["version"],
        )

    def _select_schema(self, name: str) -> TableSchema | None:
        row = self._conn.execute(
            f"SELECT * FROM {_quote(self.catalog_name)} WHERE name = ?", (name,)
        ).fetchone()
        return self._schema_from_row(row) if row else None

    def _write_schema(self, schema: TableSchema) -> None:
        self._conn.execute(
            f"""
            INSERT INTO {_quote(self.catalog_name)} (name, columns, indexes, version)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                columns = excluded.columns,
                indexes = excluded.indexes,
                version = excluded.version
            """,
            (
                schema.name,
                json.dumps({k: v.to_dict() for k, v in schema.columns.items()}),
                json.dumps([i.to_dict() for i in schema.indexes]),
                schema.version,
            ),
        )

    def _create_physical(self, table: str, schema: TableSchema, index_base: str | None = None) -> None:
        """Create a physical table and its indexes.

        Index names are derived from index_base (the live physical name)
        so that a shadow table's indexes keep their names after the rename.
        """
        index_base = index_base or table
        columns = ",\n    ".join(_column_sql(n, c) for n, c in schema.columns.items())
        self._conn.execute(f"CREATE TABLE {_quote(table)} (\n    {columns}\n)")

        for index in schema.indexes:
            index_name = "_".join((index_base, *index.fields, f"v{schema.version}"))
            fields = ", ".join(_quote(f) for f in index.fields)
            unique = "UNIQUE " if index.unique else ""
            self._conn.execute(
                f"CREATE {unique}INDEX {_quote(index_name)} ON {_quote(table)} ({fields})"
            )

    def _copy_shared(self, old: TableSchema, new: TableSchema, source: str, target: str) -> bool:
        """Copy columns both schemas share from source into target.

        Returns:
            False if the schemas share no columns besides id (nothing copied)
        """
        shared = shared_columns(old, new)
        if not [c for c in shared if c != ID_COLUMN_NAME]:
            return False

        names = list(shared)
        selected = []
        for name in shared:
            column = new.columns[name]
            if not column.nullable and name != ID_COLUMN_NAME:
                selected.append(f"COALESCE({_quote(name)}, {_fill_sql(column)})")
            else:
                selected.append(_quote(name))
        for name, column in new.columns.items():
            if name not in old.columns and not column.nullable:
                names.append(name)
                selected.append(_fill_sql(column))

        self._conn.execute(
            f"INSERT INTO {_quote(target)} ({', '.join(_quote(n) for n in names)}) "
            f"SELECT {', '.join(selected)} FROM {_quote(source)}"
        )
        return True

    async def init(self) -> None:
        async with self._lock:
            self._initialized = False
            self._ensure_catalog()
        logger.info(f"Initialized table catalog: {self.catalog_name}")

    async def create(self, schema: TableSchema) -> TableSchema:
        created = self.prepare_schema(schema, version=0)
        async with self._lock:
            self._ensure_catalog()
            with _transaction(self._conn, f"Create of table '{created.name}'"):
                if self._select_schema(created.name) is not None:
                    raise ConflictError(
                        f"Table '{created.name}' already exists",
                        details={"table": created.name},
                    )
                self._create_physical(self.physical_name(created.name), created)
                self._write_schema(created)

        logger.info(
            f"Created table: {created.name}",
            extra={"tenant": self.tenant, "table": created.name, "version": created.version},
        )
        return created

    async def define(self, name: str) -> TableSchema | None:
        self._ensure_catalog()
        return self._select_schema(name)

    async def list(self, prefix: str | None = None) -> list[TableSchema]:
        self._ensure_catalog()
        sql = f"SELECT * FROM {_quote(self.catalog_name)}"
        params: tuple = ()
        if prefix:
            sql += " WHERE substr(name, 1, ?) = ?"
            params = (len(prefix), prefix)
        rows = self._conn.execute(sql + " ORDER BY name", params).fetchall()
        return [self._schema_from_row(row) for row in rows]

    async def redefine(self, name: str, schema: TableSchema) -> TableSchema:
        target = self.prepare_schema(schema, name=name)
        physical = self.physical_name(name)
        shadow = "_" + physical

        async with self._lock:
            self._ensure_catalog()
            with _transaction(self._conn, f"Redefinition of table '{name}'"):
                current = self._select_schema(name)
                if current is None:
                    created = self.prepare_schema(target, version=0)
                    self._create_physical(physical, created)
                    self._write_schema(created)
                    result, changes = created, None
                elif structurally_equal(current, target):
                    result, changes = current, []
                else:
                    result = self.prepare_schema(target, version=current.version + 1)
                    changes = diff_schemas(current, result)

                    self._conn.execute(f"DROP TABLE IF EXISTS {_quote(shadow)}")
                    self._create_physical(shadow, result, index_base=physical)
                    if not self._copy_shared(current, result, physical, shadow):
                        logger.warning(
                            f"Redefining table '{name}' with no shared columns, "
                            "existing records are discarded",
                            extra={"tenant": self.tenant, "table": name},
                        )
                    self._conn.execute(f"DROP TABLE {_quote(physical)}")
                    self._conn.execute(
                        f"ALTER TABLE {_quote(shadow)} RENAME TO {_quote(physical)}"
                    )
                    self._write_schema(result)

        if changes is None:
            logger.info(
                f"Created table: {name}",
                extra={"tenant": self.tenant, "table": name, "version": result.version},
            )
        elif changes:
            logger.info(
                f"Redefined table: {name}",
                extra={
                    "tenant": self.tenant,
                    "table": name,
                    "old_version": result.version - 1,
                    "version": result.version,
                    "changes": [str(c) for c in changes],
                },
            )
        return result

    def _drop(self, name: str) -> None:
        self._conn.execute(f"DROP TABLE IF EXISTS {_quote(self.physical_name(name))}")
        self._conn.execute(f"DELETE FROM {_quote(self.catalog_name)} WHERE name = ?", (name,))

    async def drop(self, name: str) -> None:
        async with self._lock:
            self._ensure_catalog()
            with _transaction(self._conn, f"Drop of table '{name}'"):
                if self._select_schema(name) is None:
                    raise NotFoundError(f"Table '{name}' not found", table=name)
                self._drop(name)
        logger.info(f"Dropped table: {name}", extra={"tenant": self.tenant, "table": name})

    async def drop_many(self, names: Sequence[str]) -> None:
        async with self._lock:
            self._ensure_catalog()
            with _transaction(self._conn, "Drop of tables"):
                dropped = [n for n in names if self._select_schema(n) is not None]
                for name in dropped:
                    self._drop(name)
        logger.info(f"Dropped {len(dropped)} tables", extra={"tenant": self.tenant, "tables": dropped})

    async def drop_prefixed(self, prefix: str) -> None:
        names = [schema.name for schema in await self.list(prefix)]
        await self.drop_many(names)

    async def table(self, name: str) -> SQLiteTable:
        schema = await self.define(name)
        if schema is None:
            raise NotFoundError(f"Table '{name}' not found", table=name)
        return SQLiteTable(self._conn, self.physical_name(name), schema)


__all__ = ["SQLiteTable", "SQLiteTableStore", "connect"]
