"""
Integration tests for table redefinition on every backend.

Tests cover:
- No-op redefinition
- Version bumps and preservation of shared columns
- Filling of non-nullable columns
- Redefinition without shared columns
- Rollback when the migrated data violates the new schema
"""

import logging

import pytest

from dbaas.dyntable_server.errors import ConflictError
from dbaas.dyntable_server.schema.types import ColumnDef, ColumnType, IndexDef, TableSchema


def schema_of(indexes=None, **columns):
    """Helper to create table T from column definitions."""
    return TableSchema(name="T", columns=columns, indexes=indexes or [])


INT = ColumnDef(ColumnType.INT)
STRING = ColumnDef(ColumnType.STRING)
BOOLEAN = ColumnDef(ColumnType.BOOLEAN)


class TestRedefine:
    """Tests for TableStore.redefine."""

    @pytest.mark.asyncio
    async def test_missing_table_is_created(self, store):
        result = await store.redefine("T", schema_of(x=INT))

        assert result.version == 0
        assert list(result.columns) == ["id", "x"]
        assert (await store.define("T")).version == 0

    @pytest.mark.asyncio
    async def test_unchanged_schema_is_noop(self, store):
        """Redefining with the same shape twice bumps nothing and keeps data."""
        await store.create(schema_of(x=INT, y=STRING))
        table = await store.table("T")
        row = await table.add({"x": 1, "y": "k"})

        first = await store.redefine("T", schema_of(x=INT, y=STRING))
        second = await store.redefine("T", schema_of(y=STRING, x=INT))

        assert first.version == 0
        assert second.version == 0
        assert await (await store.table("T")).all() == [row]

    @pytest.mark.asyncio
    async def test_shared_columns_survive(self, store):
        await store.create(schema_of(x=INT, y=STRING))
        row = await (await store.table("T")).add({"x": 1, "y": "k"})

        result = await store.redefine("T", schema_of(x=INT, z=BOOLEAN))

        assert result.version == 1
        assert (await store.define("T")).version == 1
        migrated = await (await store.table("T")).one(row["id"])
        assert migrated == {"id": row["id"], "x": 1, "z": None}

    @pytest.mark.asyncio
    async def test_versions_increase_by_one(self, store):
        await store.create(schema_of(x=INT))

        versions = []
        for extra in ("a", "b", "c"):
            result = await store.redefine("T", schema_of(x=INT, **{extra: STRING}))
            versions.append(result.version)

        assert versions == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_changed_type_converts_values(self, store):
        await store.create(schema_of(x=INT, y=STRING))
        row = await (await store.table("T")).add({"x": 1, "y": "12"})

        await store.redefine("T", schema_of(x=INT, y=INT))

        assert (await (await store.table("T")).one(row["id"]))["y"] == 12

    @pytest.mark.asyncio
    async def test_non_nullable_columns_are_filled(self, store):
        await store.create(schema_of(x=INT, s=STRING))
        row = await (await store.table("T")).add({"x": 1})

        await store.redefine(
            "T",
            schema_of(
                x=INT,
                s=ColumnDef(ColumnType.STRING, nullable=False),
                n=ColumnDef(ColumnType.INT, nullable=False),
                f=ColumnDef(ColumnType.FLOAT, nullable=False),
            ),
        )

        migrated = await (await store.table("T")).one(row["id"])
        assert migrated == {"id": row["id"], "x": 1, "s": "", "n": 0, "f": 0.0}

    @pytest.mark.asyncio
    async def test_no_shared_columns_discards_rows(self, store, caplog):
        await store.create(schema_of(x=INT))
        await (await store.table("T")).add({"x": 1})

        with caplog.at_level(logging.WARNING):
            result = await store.redefine("T", schema_of(w=STRING))

        assert result.version == 1
        assert await (await store.table("T")).all() == []
        assert "no shared columns" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_migration_rolls_back(self, store):
        """A unique index the existing rows violate leaves the old table in place."""
        await store.create(schema_of(email=STRING, age=INT))
        table = await store.table("T")
        first = await table.add({"email": "a@example.com", "age": 1})
        second = await table.add({"email": "a@example.com", "age": 2})

        with pytest.raises(ConflictError):
            await store.redefine(
                "T",
                schema_of(indexes=[IndexDef(("email",), unique=True)], email=STRING, age=INT),
            )

        schema = await store.define("T")
        assert schema.version == 0
        assert schema.indexes == []
        table = await store.table("T")
        assert sorted(await table.all(), key=lambda r: r["age"]) == [first, second]
        await table.add({"email": "a@example.com", "age": 3})
        assert [s.name for s in await store.list()] == ["T"]

    @pytest.mark.asyncio
    async def test_indexes_survive_repeated_redefinition(self, store):
        unique_email = [IndexDef(("email",), unique=True)]
        await store.create(schema_of(email=STRING))

        await store.redefine("T", schema_of(indexes=unique_email, email=STRING))
        await store.redefine("T", schema_of(indexes=unique_email, email=STRING, name=STRING))

        table = await store.table("T")
        assert table.schema.version == 2
        await table.add({"email": "a@example.com"})
        with pytest.raises(ConflictError):
            await table.add({"email": "a@example.com"})

    @pytest.mark.asyncio
    async def test_redefinition_is_per_tenant(self, factory):
        alice = factory("alice")
        bob = factory("bob")
        await alice.create(schema_of(x=INT))
        await bob.create(schema_of(x=INT))
        await (await bob.table("T")).add({"x": 7})

        await alice.redefine("T", schema_of(y=STRING))

        assert (await bob.define("T")).version == 0
        assert [r["x"] for r in await (await bob.table("T")).all()] == [7]
