"""
Schema store module for SchemaHub.

This module owns all persisted registry state:
- Immutable schema records, addressable by ID and by (subject, version)
- Per-subject compatibility mode and per-version active/purged state
- Subject groups
- Schema ID allocation

Backends:
- InMemorySchemaStore: volatile, for tests and local development
- SqliteSchemaStore: durable single-file backend

Invariants:
    - The store is the only shared mutable resource of the registry
    - A (subject, version) pair maps to exactly one record, forever
"""

from .allocator import FileIdAllocator, IdAllocator, InMemoryIdAllocator
from .base import SchemaStore, create_schema_store
from .memory import InMemorySchemaStore
from .sqlite import SqliteIdAllocator, SqliteSchemaStore

__all__ = [
    "FileIdAllocator",
    "IdAllocator",
    "InMemoryIdAllocator",
    "InMemorySchemaStore",
    "SchemaStore",
    "SqliteIdAllocator",
    "SqliteSchemaStore",
    "create_schema_store",
]
