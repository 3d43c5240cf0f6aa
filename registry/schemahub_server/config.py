"""
Configuration management for the SchemaHub server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - An invalid enum-valued setting fails at startup, never at first use
    - The default compatibility mode is BACKWARD unless explicitly overridden

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and log_config() in sync when adding fields
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from .schema.types import CompatibilityMode

logger = logging.getLogger(__name__)


class StorageBackend(Enum):
    """Supported schema store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP API configuration.

    Attributes:
        host: Interface to bind the HTTP server to
        port: TCP port of the HTTP server
        cors_origins: Comma-separated allowed CORS origins ("*" for any)
    """

    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: str = "*"

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=os.getenv("CORS_ORIGINS", "*"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Schema store configuration.

    Attributes:
        backend: Which store backend to use
        data_dir: Directory for the SQLite database
        db_name: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        id_allocator_path: State file for the memory backend's ID allocator;
            unset means IDs restart from 1 with every process
    """

    backend: StorageBackend = StorageBackend.MEMORY
    data_dir: str = "/var/lib/schemahub"
    db_name: str = "registry.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    id_allocator_path: str | None = None

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If STORAGE_BACKEND is not a known backend
        """
        backend_str = os.getenv("STORAGE_BACKEND", "memory").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: memory, sqlite"
            )
        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/schemahub"),
            db_name=os.getenv("SQLITE_DB_NAME", "registry.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            id_allocator_path=os.getenv("ID_ALLOCATOR_PATH") or None,
        )


@dataclass(frozen=True)
class RegistryConfig:
    """Registry behaviour configuration.

    Attributes:
        default_compatibility: Mode for subjects without an explicit mode
    """

    default_compatibility: CompatibilityMode = CompatibilityMode.BACKWARD

    @classmethod
    def from_env(cls) -> RegistryConfig:
        """Load configuration from environment variables."""
        return cls(
            default_compatibility=CompatibilityMode.from_str(
                os.getenv("DEFAULT_COMPATIBILITY", "BACKWARD")
            ),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        http: HTTP API configuration
        storage: Schema store configuration
        registry: Registry behaviour configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            registry=RegistryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT must be between 1 and 65535, got {self.http.port}")

        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be non-negative")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.storage.backend == StorageBackend.SQLITE:
            if not self.storage.db_name:
                raise ValueError("SQLITE_DB_NAME is required when STORAGE_BACKEND=sqlite")
            if not os.path.exists(self.storage.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.storage.data_dir}. "
                    "It will be created on first write."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": f"{self.http.host}:{self.http.port}",
                "storage_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "id_allocator_path": self.storage.id_allocator_path,
                "default_compatibility": self.registry.default_compatibility.value,
                "log_level": self.observability.log_level,
            },
        )
