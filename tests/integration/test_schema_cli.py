"""
Integration tests for the schema CLI tool.

Tests cover:
- declare, list, show, drop and query commands
- Exit codes and error output
"""

import json

import pytest

from dbaas.dyntable_server.tools.schema_cli import main


@pytest.fixture
def run(tmp_path, capsys):
    """Run the CLI against a database file and return (exit code, stdout, stderr)."""
    db = str(tmp_path / "cli.db")

    def invoke(*args, tenant="alice"):
        code = main(["--db", db, "--tenant", tenant, *args])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return invoke


@pytest.fixture
def declaration(tmp_path):
    path = tmp_path / "types.graphql"
    path.write_text("type User { id: ID! name: String }\ntype Tag { id: ID! label: String }")
    return str(path)


class TestSchemaCLI:
    """Tests for the schema CLI commands."""

    def test_declare(self, run, declaration):
        code, out, _ = run("declare", declaration)

        assert code == 0
        assert [d["name"] for d in json.loads(out)] == ["User", "Tag"]

    def test_list_and_show(self, run, declaration):
        run("declare", declaration)

        _, listed, _ = run("list")
        _, prefixed, _ = run("list", "--prefix", "Us")
        code, shown, _ = run("show", "User")

        assert [s["name"] for s in json.loads(listed)] == ["Tag", "User"]
        assert [s["name"] for s in json.loads(prefixed)] == ["User"]
        assert code == 0
        assert json.loads(shown) in json.loads(listed)

    def test_tenants_are_separate(self, run, declaration):
        run("declare", declaration)

        _, out, _ = run("list", tenant="bob")
        assert json.loads(out) == []

    def test_drop(self, run, declaration):
        run("declare", declaration)

        code, out, _ = run("drop", "Tag")
        _, listed, _ = run("list")

        assert code == 0
        assert json.loads(out) == {"dropped": "Tag"}
        assert [s["name"] for s in json.loads(listed)] == ["User"]

    def test_missing_table(self, run):
        code, out, err = run("show", "User")

        assert code == 1
        assert out == ""
        assert json.loads(err)["error_code"] == "NOT_FOUND"

    def test_query(self, run, declaration):
        run("declare", declaration)

        code, _, _ = run("query", 'mutation { addUser(input: {name: "Bob"}) { id } }')
        _, out, _ = run(
            "query",
            "query F($f: JSON) { users(filter: $f) { name } }",
            "--variables",
            '{"f": {"name": "Bob"}}',
        )

        assert code == 0
        assert json.loads(out) == {"data": {"users": [{"name": "Bob"}]}}

    def test_query_errors_exit_nonzero(self, run, declaration):
        run("declare", declaration)

        code, out, _ = run("query", "{ posts { id } }")

        assert code == 1
        assert json.loads(out)["errors"]

    @pytest.mark.parametrize("variables", ["{not json", "[1, 2]"])
    def test_invalid_variables(self, run, declaration, variables):
        run("declare", declaration)

        code, out, err = run("query", "{ users { id } }", "--variables", variables)

        assert code == 1
        assert out == ""
        assert json.loads(err)["error_code"] == "MALFORMED"
