"""
Base protocol for schema store backends.

This module defines the SchemaStore protocol that all backends must
implement, along with the factory that builds a store and its ID allocator
from configuration.

Invariants:
    - Records are never mutated in place; only subject state changes
    - put() rejects duplicate IDs and non-contiguous versions
    - append() allocates the ID and persists the record as one atomic unit,
      after re-checking the head version and content hash in that unit
    - history() is ascending by version, includes inactive versions and
      excludes purged ones

How to change safely:
    - Protocol changes require updating every implementation
    - Run the shared store test-suite against every backend
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Optional, Protocol, Tuple, runtime_checkable

from ..schema.types import CompatibilityMode, SchemaDraft, SchemaGroup, SchemaRecord
from .allocator import IdAllocator

if TYPE_CHECKING:
    from ..config import ServerConfig


@runtime_checkable
class SchemaStore(Protocol):
    """Protocol for schema store backends.

    The store is the single source of truth for ID -> record lookups and
    the only shared mutable resource of the registry.

    Example:
        >>> store = InMemorySchemaStore()
        >>> record = await store.append(draft, allocator)
        >>> await store.get_by_id(record.id)
    """

    @abstractmethod
    async def put(self, record: SchemaRecord) -> int:
        """Persist a fully validated record.

        Returns:
            The record's ID

        Raises:
            StorageConflict: If the ID or (subject, version) already exists,
                or the version is not the subject's next version
        """
        ...

    @abstractmethod
    async def append(
        self,
        draft: SchemaDraft,
        allocator: IdAllocator,
        expected_version: Optional[int] = None,
    ) -> SchemaRecord:
        """Allocate an ID and the next version for a draft, and persist it.

        Args:
            draft: Record contents without ID or version
            allocator: Source of the schema ID
            expected_version: Head version the caller validated against; the
                append is refused if the subject has moved past it

        Raises:
            VersionConflict: If the head version differs from expected_version
            StorageConflict: If the content is already registered under the
                subject (non-purged), or another invariant is violated
        """
        ...

    @abstractmethod
    async def head_version(self, subject: str) -> int:
        """Highest version ever assigned under a subject, 0 if none.

        Inactive and purged versions count.
        """
        ...

    @abstractmethod
    async def get_by_id(self, schema_id: int) -> SchemaRecord:
        """Raises NotFoundError if the ID does not exist."""
        ...

    @abstractmethod
    async def get_by_subject_version(self, subject: str, version: int) -> SchemaRecord:
        """Raises NotFoundError if the subject or version does not exist."""
        ...

    @abstractmethod
    async def latest(self, subject: str) -> SchemaRecord:
        """Highest active version. Raises NotFoundError if there is none."""
        ...

    @abstractmethod
    async def history(self, subject: str) -> list[SchemaRecord]:
        """All non-purged versions, ascending, including inactive ones."""
        ...

    @abstractmethod
    async def find_by_hash(self, subject: str, content_hash: str) -> Optional[SchemaRecord]:
        ...

    @abstractmethod
    async def versions(self, subject: str, include_inactive: bool = False) -> list[int]:
        """Raises NotFoundError if the subject does not exist."""
        ...

    @abstractmethod
    async def subjects(self) -> list[str]:
        ...

    @abstractmethod
    async def get_compatibility(self, subject: str) -> Optional[CompatibilityMode]:
        """Configured mode of a subject, or None if never set."""
        ...

    @abstractmethod
    async def set_compatibility(self, subject: str, mode: CompatibilityMode) -> None:
        ...

    @abstractmethod
    async def is_active(self, subject: str, version: int) -> bool:
        ...

    @abstractmethod
    async def set_active(self, subject: str, version: int, active: bool) -> None:
        """Raises NotFoundError if the version does not exist."""
        ...

    @abstractmethod
    async def mark_purged(self, subject: str, version: int) -> None:
        """Raises NotFoundError if the version does not exist."""
        ...

    @abstractmethod
    async def add_to_group(self, group: str, subject: str) -> None:
        ...

    @abstractmethod
    async def remove_from_group(self, group: str, subject: str) -> None:
        ...

    @abstractmethod
    async def get_group(self, group: str) -> SchemaGroup:
        """Raises NotFoundError if the group was never created."""
        ...

    @abstractmethod
    async def groups(self) -> list[str]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


def create_schema_store(config: "ServerConfig") -> Tuple[SchemaStore, IdAllocator]:
    """Factory function to create a store and its allocator from configuration.

    Args:
        config: Server configuration

    Returns:
        Tuple of (store, allocator)

    Raises:
        ValueError: If the backend is not supported
    """
    from pathlib import Path

    from ..config import StorageBackend
    from .allocator import FileIdAllocator, InMemoryIdAllocator
    from .memory import InMemorySchemaStore
    from .sqlite import SqliteSchemaStore

    storage = config.storage
    if storage.backend == StorageBackend.MEMORY:
        allocator: IdAllocator
        if storage.id_allocator_path:
            allocator = FileIdAllocator(Path(storage.id_allocator_path))
        else:
            allocator = InMemoryIdAllocator()
        return InMemorySchemaStore(), allocator
    elif storage.backend == StorageBackend.SQLITE:
        store = SqliteSchemaStore(
            data_dir=storage.data_dir,
            db_name=storage.db_name,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
        )
        return store, store.allocator
    else:
        raise ValueError(f"Unsupported storage backend: {storage.backend}")
