"""
Integration tests for the tenant catalog layer and the generated GraphQL API.

Tests cover:
- Namespace to tenant id mapping
- Registering, replacing and dropping declared tables
- End-to-end GraphQL CRUD on a declared type
- Relation resolution through the loader
- Search, filter and batch through GraphQL
"""

import pytest

from dbaas.dyntable_server.errors import ConflictError, MalformedError, NotFoundError
from dbaas.dyntable_server.tenant_db import TenantDb

USER_TYPE = "type User { id: ID! name: String }"

BLOG_TYPES = """
type User { id: ID! name: String }
type Post { id: ID! title: String! author: User readers: [User] }
"""


@pytest.fixture
def db(factory):
    """Create a tenant layer on each backend."""
    return TenantDb(factory)


def data_of(result):
    """Data of a GraphQL result that must not carry errors."""
    assert "errors" not in result, result.get("errors")
    return result["data"]


class TestNamespaces:
    """Tests for tenant id derivation."""

    def test_tenant_id(self):
        assert TenantDb.tenant_id("alice", "") == "alice"
        assert TenantDb.tenant_id("alice", None) == "alice"
        assert TenantDb.tenant_id("alice", "app") == "alice_app"

    def test_unsafe_characters_replaced(self):
        assert TenantDb.tenant_id("a@b.c", "my-app") == "a_b_c_my_app"

    @pytest.mark.asyncio
    async def test_store_is_cached(self, db):
        first = await db.store("alice", "")
        assert await db.store("alice", "") is first
        assert await db.store("alice", "app") is not first

    @pytest.mark.asyncio
    async def test_scopes_are_isolated(self, db):
        await db.register_schemas("alice", "", USER_TYPE)

        assert [d.name for d in await db.get_schemas("alice", "")] == ["User"]
        assert await db.get_schemas("alice", "app") == []
        assert await db.get_schemas("bob", "") == []


class TestSchemaLifecycle:
    """Tests for declaring and evolving tables."""

    @pytest.mark.asyncio
    async def test_register(self, db):
        created = await db.register_schemas("alice", "", BLOG_TYPES)

        assert [d.name for d in created] == ["User", "Post"]
        post = await db.get_schema("alice", "", "Post")
        assert post.to_dict() == {
            "user": "alice",
            "scope": "",
            "name": "Post",
            "version": 0,
            "fields": [
                {"key": "id", "type": "ID!"},
                {"key": "title", "type": "String!"},
                {"key": "author", "type": "User"},
                {"key": "readers", "type": "[User]"},
            ],
        }

    @pytest.mark.asyncio
    async def test_register_existing_conflicts(self, db):
        await db.register_schemas("alice", "", USER_TYPE)
        with pytest.raises(ConflictError):
            await db.register_schemas("alice", "", USER_TYPE)

    @pytest.mark.asyncio
    async def test_register_invalid(self, db):
        with pytest.raises(MalformedError):
            await db.register_schemas("alice", "", "type User { id: ID! boss: Manager }")
        assert await db.get_schemas("alice", "") == []

    @pytest.mark.asyncio
    async def test_missing_schema(self, db):
        assert await db.get_schema("alice", "", "User") is None

    @pytest.mark.asyncio
    async def test_replace_keeps_data(self, db):
        await db.register_schemas("alice", "", USER_TYPE)
        added = data_of(await db.query("alice", "", 'mutation { addUser(input: {name: "Bob"}) { id } }'))

        replaced = await db.replace_schema(
            "alice", "", "User", "type User { id: ID! name: String age: Int }"
        )

        assert replaced.version == 1
        users = data_of(await db.query("alice", "", "{ users { id name age } }"))["users"]
        assert users == [{"id": added["addUser"]["id"], "name": "Bob", "age": None}]

    @pytest.mark.asyncio
    async def test_replace_requires_declaration_of_name(self, db):
        await db.register_schemas("alice", "", USER_TYPE)
        with pytest.raises(NotFoundError):
            await db.replace_schema("alice", "", "User", "type Person { id: ID! }")

    @pytest.mark.asyncio
    async def test_drop(self, db):
        await db.register_schemas("alice", "", BLOG_TYPES)
        await db.register_schemas("alice", "", "type Tag { id: ID! label: String }")

        await db.drop_schema("alice", "", "Tag")
        assert [d.name for d in await db.get_schemas("alice", "")] == ["Post", "User"]

        await db.drop_many_schemas("alice", "", ["Post", "Missing"])
        assert [d.name for d in await db.get_schemas("alice", "")] == ["User"]

        await db.drop_all("alice", "")
        assert await db.get_schemas("alice", "") == []


class TestGraphQL:
    """End-to-end tests through the generated query surface."""

    @pytest.mark.asyncio
    async def test_user_scenario(self, db):
        """Add, list and delete a user."""
        await db.register_schemas("alice", "", USER_TYPE)

        added = data_of(
            await db.query("alice", "", 'mutation { addUser(input: {name: "Bob"}) { id name } }')
        )["addUser"]
        assert added["id"]
        assert added["name"] == "Bob"

        users = data_of(await db.query("alice", "", "{ users { id name } }"))["users"]
        assert users == [added]

        deleted = data_of(
            await db.query(
                "alice",
                "",
                "mutation Del($id: ID!) { delUser(id: $id) }",
                {"id": added["id"]},
            )
        )
        assert deleted == {"delUser": None}
        assert data_of(await db.query("alice", "", "{ users { id } }")) == {"users": []}

    @pytest.mark.asyncio
    async def test_one_and_put(self, db):
        await db.register_schemas("alice", "", USER_TYPE)
        added = data_of(
            await db.query("alice", "", 'mutation { addUser(input: {name: "Bob"}) { id } }')
        )["addUser"]

        put = data_of(
            await db.query(
                "alice",
                "",
                'mutation Put($id: ID!) { putUser(id: $id, input: {name: "Robert"}) { id name } }',
                {"id": added["id"]},
            )
        )["putUser"]
        one = data_of(
            await db.query("alice", "", "query One($id: ID!) { user(id: $id) { name } }", added)
        )

        assert put == {"id": added["id"], "name": "Robert"}
        assert one == {"user": {"name": "Robert"}}
        assert data_of(await db.query("alice", "", '{ user(id: "nope") { name } }')) == {"user": None}

    @pytest.mark.asyncio
    async def test_relations(self, db):
        await db.register_schemas("alice", "", BLOG_TYPES)
        bob = data_of(
            await db.query("alice", "", 'mutation { addUser(input: {name: "Bob"}) { id } }')
        )["addUser"]["id"]
        eve = data_of(
            await db.query("alice", "", 'mutation { addUser(input: {name: "Eve"}) { id } }')
        )["addUser"]["id"]

        data_of(
            await db.query(
                "alice",
                "",
                """
                mutation AddPost($author: ID, $readers: [ID]) {
                  addPost(input: {title: "Hi", author: $author, readers: $readers}) { id }
                }
                """,
                {"author": bob, "readers": [eve, "gone"]},
            )
        )

        posts = data_of(
            await db.query(
                "alice",
                "",
                "{ posts { title authorID author { name } readersID readers { name } } }",
            )
        )["posts"]

        assert posts == [
            {
                "title": "Hi",
                "authorID": bob,
                "author": {"name": "Bob"},
                "readersID": [eve, "gone"],
                "readers": [{"name": "Eve"}, None],
            }
        ]

    @pytest.mark.asyncio
    async def test_filter_and_search(self, db):
        await db.register_schemas("alice", "", USER_TYPE)
        for name in ("Ann", "Bob", "Cid"):
            await db.query("alice", "", "mutation Add($n: String) { addUser(input: {name: $n}) { id } }", {"n": name})

        filtered = data_of(await db.query("alice", "", '{ users(filter: {name: "Bob"}) { name } }'))
        searched = data_of(
            await db.query(
                "alice",
                "",
                '{ searchUsers(search: {sort: "-name", skip: 1, limit: 1}) { name } }',
            )
        )
        queried = data_of(
            await db.query(
                "alice",
                "",
                "query S($s: SearchOptions!) { searchUsers(search: $s) { name } }",
                {"s": {"query": {"name": {"$gte": "B"}}, "sort": "name"}},
            )
        )

        assert filtered == {"users": [{"name": "Bob"}]}
        assert searched == {"searchUsers": [{"name": "Bob"}]}
        assert queried == {"searchUsers": [{"name": "Bob"}, {"name": "Cid"}]}

    @pytest.mark.asyncio
    async def test_search_by_date(self, db):
        """JSON query operands are strings; Date columns match them as stored text."""
        await db.register_schemas("alice", "", "type Ev { id: ID! name: String when: Date }")
        for name, when in (("x", "2020-01-01T00:00:00"), ("y", "2018-05-01T00:00:00")):
            await db.query(
                "alice",
                "",
                "mutation Add($n: String, $w: Date) { addEv(input: {name: $n, when: $w}) { id } }",
                {"n": name, "w": when},
            )

        exact = data_of(
            await db.query(
                "alice", "", '{ searchEvs(search: {query: {when: "2020-01-01T00:00:00"}}) { name } }'
            )
        )
        after = data_of(
            await db.query(
                "alice",
                "",
                "query S($s: SearchOptions!) { searchEvs(search: $s) { name } }",
                {"s": {"query": {"when": {"$gt": "2019-01-01"}}}},
            )
        )

        assert exact == {"searchEvs": [{"name": "x"}]}
        assert after == {"searchEvs": [{"name": "x"}]}

    @pytest.mark.asyncio
    async def test_batch(self, db):
        await db.register_schemas("alice", "", USER_TYPE)
        ids = []
        for name in ("Ann", "Bob"):
            result = await db.query(
                "alice", "", "mutation Add($n: String) { addUser(input: {name: $n}) { id } }", {"n": name}
            )
            ids.append(data_of(result)["addUser"]["id"])

        applied = data_of(
            await db.query(
                "alice",
                "",
                """
                mutation Batch($ann: ID!, $bob: ID!) {
                  batchUser(input: [
                    {type: put, id: $ann, value: {name: "Anne"}}
                    {type: del, id: $bob}
                  ]) { type id value { name } }
                }
                """,
                {"ann": ids[0], "bob": ids[1]},
            )
        )["batchUser"]

        assert applied == [
            {"type": "put", "id": ids[0], "value": {"name": "Anne"}},
            {"type": "del", "id": ids[1], "value": None},
        ]
        users = data_of(await db.query("alice", "", "{ users { name } }"))["users"]
        assert users == [{"name": "Anne"}]

    @pytest.mark.asyncio
    async def test_errors_are_reported_in_result(self, db):
        await db.register_schemas("alice", "", USER_TYPE)

        missing = await db.query(
            "alice", "", 'mutation { putUser(id: "nope", input: {name: "x"}) { id } }'
        )
        unknown = await db.query("alice", "", "{ posts { id } }")

        assert "not found" in missing["errors"][0]["message"]
        assert missing["data"] is None
        assert unknown["errors"]
        assert "data" not in unknown or unknown["data"] is None

    @pytest.mark.asyncio
    async def test_empty_namespace(self, db):
        result = await db.query("alice", "", "{ _empty }")
        assert data_of(result) == {"_empty": None}

    @pytest.mark.asyncio
    async def test_identity_resolver(self, factory):
        seen = []

        async def get_user(user_id):
            seen.append(user_id)
            return {"id": user_id}

        db = TenantDb(factory, get_user=get_user)
        await db.register_schemas("alice", "", USER_TYPE)

        data_of(await db.query("alice", "", "{ users { id } }"))

        assert seen == ["alice"]
