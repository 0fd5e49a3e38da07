"""
Configuration management for the DynTable server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The table prefix is a plain identifier (it becomes part of SQL table names)

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable once released
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StorageBackend(Enum):
    """Supported table storage backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class StorageConfig:
    """Table storage configuration.

    Attributes:
        backend: Which storage backend holds tenant tables
        data_dir: Directory for the SQLite database file
        db_filename: SQLite file name, or ":memory:"
        table_prefix: Store-level prefix for every physical table name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StorageBackend = StorageBackend.SQLITE
    data_dir: str = "./data"
    db_filename: str = "dyntable.db"
    table_prefix: str = "dyn"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @property
    def db_path(self) -> str:
        """Full path of the SQLite database (or ':memory:')."""
        if self.db_filename == ":memory:":
            return self.db_filename
        return str(Path(self.data_dir) / self.db_filename)

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            )

        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "./data"),
            db_filename=os.getenv("DB_FILENAME", "dyntable.db"),
            table_prefix=os.getenv("TABLE_PREFIX", "dyn"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP boundary configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins
        graphql_debug: Include exception detail in GraphQL errors
    """

    host: str = "0.0.0.0"
    port: int = 8082
    cors_origins: tuple[str, ...] = ("*",)
    graphql_debug: bool = False

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8082")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            graphql_debug=os.getenv("GRAPHQL_DEBUG", "false").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Table storage configuration
        http: HTTP boundary configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not _IDENTIFIER.match(self.storage.table_prefix):
            raise ValueError(
                f"TABLE_PREFIX must be a plain identifier, got '{self.storage.table_prefix}'"
            )
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")

        if (
            self.storage.backend == StorageBackend.SQLITE
            and self.storage.db_filename != ":memory:"
            and not os.path.exists(self.storage.data_dir)
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first open."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "storage_backend": self.storage.backend.value,
                "db_path": self.storage.db_path
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "table_prefix": self.storage.table_prefix,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
