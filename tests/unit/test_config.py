"""
Unit tests for configuration and the error taxonomy.

Tests cover:
- Environment loading and defaults
- Configuration validation
- Error codes, statuses and bodies
"""

import pytest

from dbaas.dyntable_server.config import (
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageBackend,
    StorageConfig,
)
from dbaas.dyntable_server.errors import (
    ConflictError,
    DynTableError,
    InternalError,
    MalformedError,
    NotFoundError,
    NotSupportedError,
    UnauthorizedError,
)


class TestStorageConfig:
    """Tests for StorageConfig."""

    def test_defaults(self):
        config = StorageConfig()
        assert config.backend == StorageBackend.SQLITE
        assert config.db_path == "data/dyntable.db"
        assert config.table_prefix == "dyn"

    def test_memory_database_path(self):
        assert StorageConfig(db_filename=":memory:").db_path == ":memory:"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "MEMORY")
        monkeypatch.setenv("TABLE_PREFIX", "app")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "250")

        config = StorageConfig.from_env()

        assert config.backend == StorageBackend.MEMORY
        assert config.table_prefix == "app"
        assert config.wal_mode is False
        assert config.busy_timeout_ms == 250

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")
        with pytest.raises(ValueError, match="Invalid STORAGE_BACKEND"):
            StorageConfig.from_env()


class TestHttpConfig:
    """Tests for HttpConfig."""

    def test_cors_origins_split(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
        monkeypatch.setenv("GRAPHQL_DEBUG", "true")

        config = HttpConfig.from_env()

        assert config.cors_origins == ("http://a.test", "http://b.test")
        assert config.graphql_debug is True


class TestServerConfig:
    """Tests for ServerConfig validation."""

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = ServerConfig.from_env()

        assert config.storage.data_dir == str(tmp_path)
        assert config.observability.log_format == "json"

    def test_rejects_bad_prefix(self):
        config = ServerConfig(storage=StorageConfig(table_prefix="bad-prefix"))
        with pytest.raises(ValueError, match="TABLE_PREFIX"):
            config.validate()

    def test_rejects_bad_log_format(self):
        config = ServerConfig(observability=ObservabilityConfig(log_format="xml"))
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()


class TestErrors:
    """Tests for the error taxonomy."""

    @pytest.mark.parametrize(
        "error, code, status",
        [
            (MalformedError("bad"), "MALFORMED", 400),
            (NotFoundError("gone"), "NOT_FOUND", 404),
            (NotSupportedError("no"), "NOT_SUPPORTED", 405),
            (ConflictError("twice"), "CONFLICT", 409),
            (InternalError(), "INTERNAL", 500),
            (UnauthorizedError("who"), "UNAUTHORIZED", 401),
        ],
    )
    def test_codes_and_statuses(self, error, code, status):
        assert isinstance(error, DynTableError)
        assert error.code == code
        assert error.status == status

    def test_to_dict(self):
        error = NotFoundError("Record 'r1' not found", table="Note", record_id="r1")

        assert error.to_dict() == {
            "error": "Record 'r1' not found",
            "error_code": "NOT_FOUND",
            "details": {"table": "Note", "id": "r1"},
        }

    def test_to_dict_without_details(self):
        assert MalformedError("bad").to_dict() == {"error": "bad", "error_code": "MALFORMED"}
