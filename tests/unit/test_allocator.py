"""
Unit tests for schema ID allocators.

Tests cover:
- Monotonic allocation
- Uniqueness under concurrent callers
- Durable resume after restart (file and SQLite allocators)
- Exhaustion of the 32-bit ID space
"""

import tempfile
import threading
from pathlib import Path

import pytest

from registry.schemahub_server.errors import StorageConflict
from registry.schemahub_server.schema.types import MAX_SCHEMA_ID
from registry.schemahub_server.store.allocator import (
    FileIdAllocator,
    IdAllocator,
    InMemoryIdAllocator,
)
from registry.schemahub_server.store.sqlite import SqliteSchemaStore


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


class TestInMemoryIdAllocator:
    """Tests for InMemoryIdAllocator."""

    def test_starts_at_one(self):
        """The first ID is 1 and IDs increase by one."""
        allocator = InMemoryIdAllocator()
        assert [allocator.next() for _ in range(3)] == [1, 2, 3]
        assert allocator.high_water_mark == 3

    def test_satisfies_protocol(self):
        """Allocators satisfy the IdAllocator protocol."""
        assert isinstance(InMemoryIdAllocator(), IdAllocator)

    def test_concurrent_callers_get_unique_ids(self):
        """Threads never receive the same ID."""
        allocator = InMemoryIdAllocator()
        results = []
        lock = threading.Lock()

        def worker():
            ids = [allocator.next() for _ in range(200)]
            with lock:
                results.extend(ids)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 1600
        assert len(set(results)) == 1600
        assert max(results) == 1600

    def test_exhaustion(self):
        """Allocating past the 32-bit range raises StorageConflict."""
        allocator = InMemoryIdAllocator(start=MAX_SCHEMA_ID - 1)
        assert allocator.next() == MAX_SCHEMA_ID
        with pytest.raises(StorageConflict):
            allocator.next()

    def test_negative_start_rejected(self):
        """The starting mark cannot be negative."""
        with pytest.raises(ValueError):
            InMemoryIdAllocator(start=-1)


class TestFileIdAllocator:
    """Tests for FileIdAllocator."""

    def test_resumes_after_restart(self, data_dir):
        """A new allocator on the same file never reuses IDs."""
        path = Path(data_dir) / "ids" / "allocator.state"
        first = FileIdAllocator(path)
        assert [first.next(), first.next()] == [1, 2]

        second = FileIdAllocator(path)
        assert second.high_water_mark == 2
        assert second.next() == 3

    def test_mark_persisted_before_return(self, data_dir):
        """The state file holds the ID as soon as next() returns."""
        path = Path(data_dir) / "allocator.state"
        allocator = FileIdAllocator(path)
        schema_id = allocator.next()
        assert path.read_text(encoding="ascii") == str(schema_id)

    def test_corrupt_state(self, data_dir):
        """A corrupt state file is refused, never silently reset."""
        path = Path(data_dir) / "allocator.state"
        path.write_text("not-a-number", encoding="ascii")
        with pytest.raises(StorageConflict, match="Corrupt"):
            FileIdAllocator(path)


class TestSqliteIdAllocator:
    """Tests for the SQLite store's allocator."""

    def test_resumes_after_reopen(self, data_dir):
        """The high-water mark lives in the database."""
        store = SqliteSchemaStore(data_dir, wal_mode=False)
        assert store.allocator.next() == 1
        assert store.allocator.next() == 2

        reopened = SqliteSchemaStore(data_dir, wal_mode=False)
        assert reopened.allocator.high_water_mark == 2
        assert reopened.allocator.next() == 3
