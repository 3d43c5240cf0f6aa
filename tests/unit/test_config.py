"""
Unit tests for server configuration.

Tests cover:
- Defaults
- Environment overrides
- Validation failures
- Store factory wiring
"""

import tempfile

import pytest

from registry.schemahub_server.config import (
    ServerConfig,
    StorageBackend,
    StorageConfig,
)
from registry.schemahub_server.schema.types import CompatibilityMode
from registry.schemahub_server.store import (
    FileIdAllocator,
    InMemoryIdAllocator,
    InMemorySchemaStore,
    SqliteSchemaStore,
    create_schema_store,
)

ENV_VARS = [
    "HTTP_HOST",
    "HTTP_PORT",
    "STORAGE_BACKEND",
    "DATA_DIR",
    "SQLITE_DB_NAME",
    "SQLITE_WAL_MODE",
    "SQLITE_BUSY_TIMEOUT_MS",
    "ID_ALLOCATOR_PATH",
    "DEFAULT_COMPATIBILITY",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove registry settings from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestServerConfig:
    """Tests for ServerConfig.from_env()."""

    def test_defaults(self, clean_env):
        """Defaults run an in-memory BACKWARD registry on 8081."""
        config = ServerConfig.from_env()
        assert config.http.port == 8081
        assert config.storage.backend is StorageBackend.MEMORY
        assert config.storage.id_allocator_path is None
        assert config.registry.default_compatibility is CompatibilityMode.BACKWARD
        assert config.observability.log_format == "json"

    def test_overrides(self, clean_env):
        """Environment variables override defaults."""
        clean_env.setenv("HTTP_PORT", "9000")
        clean_env.setenv("STORAGE_BACKEND", "SQLite")
        clean_env.setenv("DATA_DIR", "/tmp/schemahub")
        clean_env.setenv("SQLITE_WAL_MODE", "false")
        clean_env.setenv("DEFAULT_COMPATIBILITY", "full_transitive")

        config = ServerConfig.from_env()
        assert config.http.port == 9000
        assert config.storage.backend is StorageBackend.SQLITE
        assert config.storage.wal_mode is False
        assert config.registry.default_compatibility is CompatibilityMode.FULL_TRANSITIVE

    def test_invalid_backend(self, clean_env):
        """Unknown backends fail at startup."""
        clean_env.setenv("STORAGE_BACKEND", "postgres")
        with pytest.raises(ValueError, match="STORAGE_BACKEND"):
            ServerConfig.from_env()

    def test_invalid_default_mode(self, clean_env):
        """Unknown compatibility modes fail at startup."""
        clean_env.setenv("DEFAULT_COMPATIBILITY", "LOOSE")
        with pytest.raises(ValueError):
            ServerConfig.from_env()

    def test_invalid_port(self, clean_env):
        """Ports outside 1..65535 are rejected."""
        clean_env.setenv("HTTP_PORT", "70000")
        with pytest.raises(ValueError, match="HTTP_PORT"):
            ServerConfig.from_env()

    def test_invalid_log_format(self, clean_env):
        """Only json and text log formats are accepted."""
        clean_env.setenv("LOG_FORMAT", "xml")
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            ServerConfig.from_env()


class TestCreateSchemaStore:
    """Tests for create_schema_store()."""

    def test_memory_backend(self):
        """The memory backend uses a volatile allocator by default."""
        store, allocator = create_schema_store(ServerConfig())
        assert isinstance(store, InMemorySchemaStore)
        assert isinstance(allocator, InMemoryIdAllocator)

    def test_memory_backend_with_allocator_file(self):
        """ID_ALLOCATOR_PATH makes memory-backend IDs durable."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = ServerConfig(storage=StorageConfig(id_allocator_path=f"{tmpdir}/ids"))
            _, allocator = create_schema_store(config)
            assert isinstance(allocator, FileIdAllocator)

    def test_sqlite_backend(self):
        """The SQLite backend allocates through its own database."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = ServerConfig(
                storage=StorageConfig(backend=StorageBackend.SQLITE, data_dir=tmpdir)
            )
            store, allocator = create_schema_store(config)
            assert isinstance(store, SqliteSchemaStore)
            assert allocator is store.allocator
