"""
Shared fixtures for integration tests.

Every storage test runs once per backend: a SQLite database in memory and
the flat key-value space. Stores of one factory share the backend resource,
so tenants created from the same factory live side by side.
"""

import pytest

from dbaas.dyntable_server.config import StorageBackend, StorageConfig
from dbaas.dyntable_server.store import StoreFactory


@pytest.fixture(
    params=[StorageBackend.SQLITE, StorageBackend.MEMORY],
    ids=["sqlite", "memory"],
)
def factory(request):
    """Create a store factory for each backend."""
    store_factory = StoreFactory(
        StorageConfig(backend=request.param, db_filename=":memory:", wal_mode=False)
    )
    yield store_factory
    store_factory.close()


@pytest.fixture
def store(factory):
    """Create the table store of tenant alice."""
    return factory("alice")
