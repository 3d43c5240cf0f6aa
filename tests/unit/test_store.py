"""
Unit tests for schema store backends.

Every test runs against both InMemorySchemaStore and SqliteSchemaStore.

Tests cover:
- Append and lookup by ID, subject/version and content hash
- Version contiguity and duplicate rejection
- Head-version compare-and-swap and content uniqueness on append
- Active/inactive/purged state
- Compatibility configuration
- Groups
"""

import sqlite3
import tempfile

import pytest

from registry.schemahub_server.errors import (
    NotFoundError,
    RegistryUnavailable,
    StorageConflict,
    VersionConflict,
)
from registry.schemahub_server.schema.types import (
    CompatibilityMode,
    SchemaDraft,
    SchemaFormat,
    SchemaRecord,
    content_hash,
    field,
)
from registry.schemahub_server.store.allocator import InMemoryIdAllocator
from registry.schemahub_server.store.memory import InMemorySchemaStore
from registry.schemahub_server.store.sqlite import SqliteSchemaStore


def draft(subject="orders", body=b'{"v": 1}', fields=(field("id", "long"),)):
    return SchemaDraft(
        subject=subject,
        content_hash=content_hash(SchemaFormat.AVRO, body),
        format=SchemaFormat.AVRO,
        raw_definition=body,
        fields=fields,
    )


@pytest.fixture(params=["memory", "sqlite"])
def backend(request):
    """Yield (store, allocator) for each backend."""
    if request.param == "memory":
        yield InMemorySchemaStore(), InMemoryIdAllocator()
    else:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteSchemaStore(tmpdir, wal_mode=False)
            yield store, store.allocator


@pytest.fixture
def store(backend):
    return backend[0]


@pytest.fixture
def allocator(backend):
    return backend[1]


class TestAppendAndLookup:
    """Tests for append() and the read paths."""

    @pytest.mark.asyncio
    async def test_append_assigns_id_and_version(self, store, allocator):
        """The first append gets version 1 and a fresh ID."""
        record = await store.append(draft(), allocator)
        assert record.version == 1
        assert record.id == 1
        assert record.registered_at > 0

        fetched = await store.get_by_id(record.id)
        assert fetched == record
        assert await store.get_by_subject_version("orders", 1) == record

    @pytest.mark.asyncio
    async def test_versions_are_contiguous(self, store, allocator):
        """Appends under one subject produce 1, 2, 3."""
        for i in range(3):
            await store.append(draft(body=f'{{"v": {i}}}'.encode()), allocator)
        assert await store.versions("orders") == [1, 2, 3]
        assert [r.version for r in await store.history("orders")] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_ids_are_global(self, store, allocator):
        """IDs increase across subjects."""
        a = await store.append(draft(subject="a"), allocator)
        b = await store.append(draft(subject="b"), allocator)
        assert b.id > a.id
        assert a.version == b.version == 1
        assert await store.subjects() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_fields_and_raw_bytes_survive(self, store, allocator):
        """Stored fields and binary raw definitions read back unchanged."""
        fields = (field("id", "long"), field("note", "string", optional=True, default=None))
        record = await store.append(draft(body=b"\x00\x01\xfe", fields=fields), allocator)
        fetched = await store.get_by_id(record.id)
        assert fetched.raw_definition == b"\x00\x01\xfe"
        assert fetched.fields == fields

    @pytest.mark.asyncio
    async def test_find_by_hash(self, store, allocator):
        """Records are found by content hash within their subject only."""
        record = await store.append(draft(), allocator)
        assert await store.find_by_hash("orders", record.content_hash) == record
        assert await store.find_by_hash("other", record.content_hash) is None

    @pytest.mark.asyncio
    async def test_not_found(self, store, allocator):
        """Unknown IDs, subjects and versions raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.get_by_id(99)
        with pytest.raises(NotFoundError):
            await store.latest("missing")
        with pytest.raises(NotFoundError):
            await store.versions("missing")
        await store.append(draft(), allocator)
        with pytest.raises(NotFoundError):
            await store.get_by_subject_version("orders", 2)


class TestAppendGuards:
    """Tests for the checks append() repeats inside its write."""

    @pytest.mark.asyncio
    async def test_head_version(self, store, allocator):
        """head_version counts every assigned version, purged ones included."""
        assert await store.head_version("orders") == 0
        await store.append(draft(body=b"1"), allocator)
        await store.append(draft(body=b"2"), allocator)
        await store.set_active("orders", 2, False)
        await store.mark_purged("orders", 2)
        assert await store.head_version("orders") == 2

    @pytest.mark.asyncio
    async def test_expected_version_matches(self, store, allocator):
        """An append naming the current head succeeds."""
        await store.append(draft(body=b"1"), allocator, expected_version=0)
        record = await store.append(draft(body=b"2"), allocator, expected_version=1)
        assert record.version == 2

    @pytest.mark.asyncio
    async def test_moved_head_refused(self, store, allocator):
        """An append naming a stale head raises VersionConflict and writes nothing."""
        await store.append(draft(body=b"1"), allocator)
        with pytest.raises(VersionConflict) as exc_info:
            await store.append(draft(body=b"2"), allocator, expected_version=0)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1
        assert await store.versions("orders") == [1]
        next_record = await store.append(draft(body=b"3"), allocator)
        assert next_record.id == 2

    @pytest.mark.asyncio
    async def test_duplicate_content_refused(self, store, allocator):
        """Content already live under the subject cannot be appended again."""
        first = await store.append(draft(), allocator)
        with pytest.raises(StorageConflict) as exc_info:
            await store.append(draft(), allocator)

        assert not isinstance(exc_info.value, VersionConflict)
        assert exc_info.value.details["id"] == first.id
        assert await store.versions("orders") == [1]

    @pytest.mark.asyncio
    async def test_purge_releases_content(self, store, allocator):
        """Purged content may be appended again as a new version."""
        await store.append(draft(), allocator)
        await store.append(draft(body=b"2"), allocator)
        await store.set_active("orders", 1, False)
        await store.mark_purged("orders", 1)

        again = await store.append(draft(), allocator, expected_version=2)
        assert again.version == 3


class TestPutInvariants:
    """Tests for put() invariant checks."""

    def _record(self, schema_id, version, subject="orders"):
        return draft(subject=subject, body=f"{schema_id}".encode()).to_record(
            schema_id, version, 1
        )

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store):
        """An ID can only be stored once."""
        await store.put(self._record(1, 1))
        with pytest.raises(StorageConflict):
            await store.put(self._record(1, 1, subject="other"))

    @pytest.mark.asyncio
    async def test_version_gap_rejected(self, store):
        """Versions must be the subject's next version."""
        await store.put(self._record(1, 1))
        with pytest.raises(StorageConflict):
            await store.put(self._record(2, 3))

    @pytest.mark.asyncio
    async def test_duplicate_version_rejected(self, store):
        """A (subject, version) pair is written once."""
        await store.put(self._record(1, 1))
        with pytest.raises(StorageConflict):
            await store.put(self._record(2, 1))
        assert isinstance(await store.get_by_id(1), SchemaRecord)


class TestVersionState:
    """Tests for active/inactive/purged state."""

    @pytest.mark.asyncio
    async def test_inactive_excluded_from_latest(self, store, allocator):
        """latest() skips inactive versions; history() keeps them."""
        await store.append(draft(body=b"1"), allocator)
        await store.append(draft(body=b"2"), allocator)
        await store.set_active("orders", 2, False)

        assert (await store.latest("orders")).version == 1
        assert not await store.is_active("orders", 2)
        assert await store.versions("orders") == [1]
        assert await store.versions("orders", include_inactive=True) == [1, 2]
        assert [r.version for r in await store.history("orders")] == [1, 2]

        await store.set_active("orders", 2, True)
        assert (await store.latest("orders")).version == 2

    @pytest.mark.asyncio
    async def test_all_inactive(self, store, allocator):
        """latest() raises when no version is active."""
        await store.append(draft(), allocator)
        await store.set_active("orders", 1, False)
        with pytest.raises(NotFoundError):
            await store.latest("orders")

    @pytest.mark.asyncio
    async def test_purge_removes_from_history(self, store, allocator):
        """Purged versions leave history() but stay readable by ID."""
        first = await store.append(draft(body=b"1"), allocator)
        await store.append(draft(body=b"2"), allocator)
        await store.set_active("orders", 1, False)
        await store.mark_purged("orders", 1)

        assert [r.version for r in await store.history("orders")] == [2]
        assert await store.versions("orders", include_inactive=True) == [2]
        assert (await store.get_by_id(first.id)).version == 1
        assert await store.find_by_hash("orders", first.content_hash) is None

    @pytest.mark.asyncio
    async def test_set_active_unknown_version(self, store, allocator):
        """Toggling an unknown version raises NotFoundError."""
        await store.append(draft(), allocator)
        with pytest.raises(NotFoundError):
            await store.set_active("orders", 5, False)


class TestCompatibilityConfig:
    """Tests for per-subject compatibility mode."""

    @pytest.mark.asyncio
    async def test_unset_is_none(self, store):
        """Subjects without a configured mode report None."""
        assert await store.get_compatibility("orders") is None

    @pytest.mark.asyncio
    async def test_set_before_first_version(self, store, allocator):
        """A mode can be set before the subject has versions."""
        await store.set_compatibility("orders", CompatibilityMode.FULL)
        assert await store.get_compatibility("orders") is CompatibilityMode.FULL
        assert await store.subjects() == []

        await store.append(draft(), allocator)
        await store.set_compatibility("orders", CompatibilityMode.NONE)
        assert await store.get_compatibility("orders") is CompatibilityMode.NONE


class TestGroups:
    """Tests for subject groups."""

    @pytest.mark.asyncio
    async def test_add_and_remove(self, store):
        """Groups collect subject names."""
        await store.add_to_group("billing", "invoices")
        await store.add_to_group("billing", "payments")
        await store.add_to_group("billing", "payments")

        group = await store.get_group("billing")
        assert group.subjects == frozenset({"invoices", "payments"})
        assert await store.groups() == ["billing"]

        await store.remove_from_group("billing", "payments")
        assert (await store.get_group("billing")).subjects == frozenset({"invoices"})

    @pytest.mark.asyncio
    async def test_emptied_group_still_exists(self, store):
        """Removing the last member leaves an empty group."""
        await store.add_to_group("billing", "invoices")
        await store.remove_from_group("billing", "invoices")
        assert (await store.get_group("billing")).subjects == frozenset()

    @pytest.mark.asyncio
    async def test_unknown_group(self, store):
        """Unknown groups raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.get_group("nope")
        with pytest.raises(NotFoundError):
            await store.remove_from_group("nope", "x")


class TestSqlitePersistence:
    """SQLite-only durability tests."""

    @pytest.mark.asyncio
    async def test_reopen_keeps_records_and_state(self):
        """A reopened database serves the same records and state."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteSchemaStore(tmpdir, wal_mode=False)
            record = await store.append(draft(), store.allocator)
            await store.set_compatibility("orders", CompatibilityMode.FORWARD)
            await store.close()

            reopened = SqliteSchemaStore(tmpdir, wal_mode=False)
            assert await reopened.get_by_id(record.id) == record
            assert await reopened.get_compatibility("orders") is CompatibilityMode.FORWARD
            second = await reopened.append(draft(body=b"2"), reopened.allocator)
            assert second.id == record.id + 1
            assert second.version == 2

    @pytest.mark.asyncio
    async def test_failed_append_allocates_nothing(self):
        """A conflicting append rolls back its ID allocation."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteSchemaStore(tmpdir, wal_mode=False)
            await store.put(draft(body=b"x").to_record(1, 1, 1))
            with pytest.raises(StorageConflict):
                await store.append(draft(), store.allocator)
            assert store.allocator.high_water_mark == 0

    @pytest.mark.asyncio
    async def test_locked_database_is_unavailable(self):
        """Writes blocked past the busy timeout raise RegistryUnavailable."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteSchemaStore(tmpdir, wal_mode=False, busy_timeout_ms=50)
            await store.append(draft(), store.allocator)

            blocker = sqlite3.connect(str(store.db_path), isolation_level=None)
            blocker.execute("BEGIN IMMEDIATE")
            try:
                with pytest.raises(RegistryUnavailable):
                    await store.append(draft(body=b"2"), store.allocator)
                with pytest.raises(RegistryUnavailable):
                    await store.set_compatibility("orders", CompatibilityMode.FULL)
                with pytest.raises(RegistryUnavailable):
                    store.allocator.next()
                assert (await store.latest("orders")).version == 1
            finally:
                blocker.execute("ROLLBACK")
                blocker.close()

            assert store.allocator.high_water_mark == 1
