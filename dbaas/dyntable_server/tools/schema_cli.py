"""
Schema CLI tool for DynTable.

Operates on one tenant namespace of a SQLite database:
- declare: Create tables from a type declaration file
- list: List table schemas
- show: Print one table schema
- drop: Drop a table
- query: Execute a query-surface document

Usage:
    python -m dbaas.dyntable_server.tools.schema_cli --db data/dyntable.db --tenant alice declare types.graphql
    python -m dbaas.dyntable_server.tools.schema_cli --db data/dyntable.db --tenant alice list
    python -m dbaas.dyntable_server.tools.schema_cli --db data/dyntable.db --tenant alice query '{ users { id } }'

Invariants:
    - Output is deterministic (sorted JSON)
    - DynTableError (or a query answered with errors) causes exit code 1

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from ..errors import DynTableError, MalformedError, NotFoundError
from ..store import SQLiteTableStore, connect
from ..tenant_db import TenantDb


class SchemaCLI:
    """CLI operations on one tenant namespace.

    Example:
        >>> cli = SchemaCLI(TenantDb(factory), tenant="alice")
        >>> await cli.declare("type Note { id: ID! text: String }")
    """

    def __init__(self, db: TenantDb, tenant: str) -> None:
        self.db = db
        self.tenant = tenant

    async def declare(self, text: str, stubs: str = "") -> list[dict[str, Any]]:
        created = await self.db.register_schemas(self.tenant, "", text, stubs)
        return [d.to_dict() for d in created]

    async def list_tables(self, prefix: str | None = None) -> list[dict[str, Any]]:
        store = await self.db.store(self.tenant, "")
        return [s.to_dict() for s in await store.list(prefix)]

    async def show(self, name: str) -> dict[str, Any]:
        store = await self.db.store(self.tenant, "")
        schema = await store.define(name)
        if schema is None:
            raise NotFoundError(f"Table '{name}' not found", table=name)
        return schema.to_dict()

    async def drop(self, name: str) -> dict[str, Any]:
        await self.db.drop_schema(self.tenant, "", name)
        return {"dropped": name}

    async def query(self, document: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.db.query(self.tenant, "", document, variables)


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def _parse_variables(text: str | None) -> dict[str, Any] | None:
    if not text:
        return None
    try:
        variables = json.loads(text)
    except ValueError as e:
        raise MalformedError(f"--variables is not valid JSON: {e}") from e
    if not isinstance(variables, dict):
        raise MalformedError("--variables must be a JSON object")
    return variables


async def _run(cli: SchemaCLI, args: argparse.Namespace) -> Any:
    if args.command == "declare":
        stubs = Path(args.stubs).read_text() if args.stubs else ""
        return await cli.declare(Path(args.file).read_text(), stubs)
    if args.command == "list":
        return await cli.list_tables(args.prefix)
    if args.command == "show":
        return await cli.show(args.name)
    if args.command == "drop":
        return await cli.drop(args.name)
    return await cli.query(args.document, _parse_variables(args.variables))


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for schema tool."""
    parser = argparse.ArgumentParser(description="DynTable schema management tool")
    parser.add_argument("--db", required=True, help="SQLite database path")
    parser.add_argument("--tenant", required=True, help="Tenant namespace")
    parser.add_argument("--table-prefix", default="dyn", help="Store-level table prefix")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # declare command
    declare_parser = subparsers.add_parser("declare", help="Create tables from declarations")
    declare_parser.add_argument("file", help="File with type declarations")
    declare_parser.add_argument("--stubs", help="File with stub declarations")

    # list command
    list_parser = subparsers.add_parser("list", help="List table schemas")
    list_parser.add_argument("--prefix", help="Only tables whose name starts with this")

    # show command
    show_parser = subparsers.add_parser("show", help="Show one table schema")
    show_parser.add_argument("name", help="Table name")

    # drop command
    drop_parser = subparsers.add_parser("drop", help="Drop a table")
    drop_parser.add_argument("name", help="Table name")

    # query command
    query_parser = subparsers.add_parser("query", help="Execute a GraphQL document")
    query_parser.add_argument("document", help="GraphQL document")
    query_parser.add_argument("--variables", help="Variables as a JSON object")

    args = parser.parse_args(argv)

    conn = connect(args.db)
    try:
        db = TenantDb(lambda tenant: SQLiteTableStore(conn, args.table_prefix, tenant))
        result = asyncio.run(_run(SchemaCLI(db, args.tenant), args))
    except DynTableError as e:
        print(_dump(e.to_dict()), file=sys.stderr)
        return 1
    finally:
        conn.close()

    print(_dump(result))
    # GraphQL reports failures in the body
    if args.command == "query" and result.get("errors"):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
