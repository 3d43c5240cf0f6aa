"""
In-memory schema store implementation.

This module provides a volatile SchemaStore backend for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit (IDs survive only if the allocator
      persists them, e.g. FileIdAllocator)
    - Writes are serialized by an internal lock; reads take no lock
    - Same contiguity and uniqueness guarantees as the SQLite backend
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..errors import NotFoundError, StorageConflict, VersionConflict
from ..schema.types import CompatibilityMode, SchemaDraft, SchemaGroup, SchemaRecord
from .allocator import IdAllocator

logger = logging.getLogger(__name__)


@dataclass
class _SubjectState:
    """Mutable per-subject bookkeeping. Records themselves stay immutable."""

    versions: Dict[int, int] = field(default_factory=dict)  # version -> id
    hashes: Dict[str, int] = field(default_factory=dict)  # content_hash -> id
    inactive: Set[int] = field(default_factory=set)
    purged: Set[int] = field(default_factory=set)
    mode: Optional[CompatibilityMode] = None

    @property
    def latest_version(self) -> int:
        return max(self.versions) if self.versions else 0


class InMemorySchemaStore:
    """In-memory implementation of SchemaStore.

    Example:
        >>> store = InMemorySchemaStore()
        >>> record = await store.append(draft, InMemoryIdAllocator())
        >>> (await store.latest(draft.subject)).version
        1
    """

    def __init__(self) -> None:
        self._records: Dict[int, SchemaRecord] = {}
        self._subjects: Dict[str, _SubjectState] = {}
        self._groups: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def _state(self, subject: str) -> _SubjectState:
        state = self._subjects.get(subject)
        if state is None or not state.versions:
            raise NotFoundError(f"Subject '{subject}' not found", "subject", subject)
        return state

    def _insert(self, record: SchemaRecord) -> None:
        """Insert under the write lock, enforcing store invariants."""
        if record.id in self._records:
            raise StorageConflict(
                f"Schema id {record.id} already exists",
                details={"id": record.id},
            )
        state = self._subjects.get(record.subject) or _SubjectState()
        expected = state.latest_version + 1
        if record.version != expected:
            raise StorageConflict(
                f"Non-contiguous version {record.version} for subject "
                f"'{record.subject}' (expected {expected})",
                details={"subject": record.subject, "version": record.version},
            )
        self._subjects[record.subject] = state
        self._records[record.id] = record
        state.versions[record.version] = record.id
        state.hashes.setdefault(record.content_hash, record.id)

    async def put(self, record: SchemaRecord) -> int:
        with self._lock:
            self._insert(record)
        return record.id

    async def append(
        self,
        draft: SchemaDraft,
        allocator: IdAllocator,
        expected_version: Optional[int] = None,
    ) -> SchemaRecord:
        with self._lock:
            state = self._subjects.get(draft.subject)
            head = state.latest_version if state else 0
            if expected_version is not None and head != expected_version:
                raise VersionConflict(draft.subject, expected_version, head)
            if state is not None and draft.content_hash in state.hashes:
                raise StorageConflict(
                    f"Content already registered under subject '{draft.subject}'",
                    details={"subject": draft.subject, "id": state.hashes[draft.content_hash]},
                )
            version = head + 1
            schema_id = allocator.next()
            record = draft.to_record(schema_id, version, int(time.time() * 1000))
            self._insert(record)

        logger.debug(
            "Appended schema",
            extra={"subject": record.subject, "version": record.version, "id": record.id},
        )
        return record

    async def head_version(self, subject: str) -> int:
        state = self._subjects.get(subject)
        return state.latest_version if state else 0

    async def get_by_id(self, schema_id: int) -> SchemaRecord:
        record = self._records.get(schema_id)
        if record is None:
            raise NotFoundError(f"Schema id {schema_id} not found", "schema", schema_id)
        return record

    def _version_record(self, subject: str, version: int) -> SchemaRecord:
        state = self._state(subject)
        schema_id = state.versions.get(version)
        if schema_id is None:
            raise NotFoundError(
                f"Version {version} of subject '{subject}' not found",
                "version",
                f"{subject}/{version}",
            )
        return self._records[schema_id]

    async def get_by_subject_version(self, subject: str, version: int) -> SchemaRecord:
        return self._version_record(subject, version)

    async def latest(self, subject: str) -> SchemaRecord:
        state = self._state(subject)
        active = [
            v for v in state.versions
            if v not in state.inactive and v not in state.purged
        ]
        if not active:
            raise NotFoundError(
                f"Subject '{subject}' has no active versions", "subject", subject
            )
        return self._records[state.versions[max(active)]]

    async def history(self, subject: str) -> List[SchemaRecord]:
        state = self._state(subject)
        return [
            self._records[state.versions[v]]
            for v in sorted(state.versions)
            if v not in state.purged
        ]

    async def find_by_hash(self, subject: str, content_hash: str) -> Optional[SchemaRecord]:
        state = self._subjects.get(subject)
        if state is None:
            return None
        schema_id = state.hashes.get(content_hash)
        return self._records.get(schema_id) if schema_id is not None else None

    async def versions(self, subject: str, include_inactive: bool = False) -> List[int]:
        state = self._state(subject)
        return [
            v for v in sorted(state.versions)
            if v not in state.purged and (include_inactive or v not in state.inactive)
        ]

    async def subjects(self) -> List[str]:
        return sorted(name for name, state in self._subjects.items() if state.versions)

    async def get_compatibility(self, subject: str) -> Optional[CompatibilityMode]:
        state = self._subjects.get(subject)
        return state.mode if state else None

    async def set_compatibility(self, subject: str, mode: CompatibilityMode) -> None:
        with self._lock:
            state = self._subjects.setdefault(subject, _SubjectState())
            state.mode = mode

    async def is_active(self, subject: str, version: int) -> bool:
        state = self._state(subject)
        return (
            version in state.versions
            and version not in state.inactive
            and version not in state.purged
        )

    async def set_active(self, subject: str, version: int, active: bool) -> None:
        with self._lock:
            self._version_record(subject, version)
            state = self._subjects[subject]
            if active:
                state.inactive.discard(version)
            else:
                state.inactive.add(version)

    async def mark_purged(self, subject: str, version: int) -> None:
        with self._lock:
            record = self._version_record(subject, version)
            state = self._subjects[subject]
            state.purged.add(version)
            # A purged definition may be registered again as a new version
            if state.hashes.get(record.content_hash) == record.id:
                del state.hashes[record.content_hash]

    async def add_to_group(self, group: str, subject: str) -> None:
        with self._lock:
            self._groups.setdefault(group, set()).add(subject)

    async def remove_from_group(self, group: str, subject: str) -> None:
        with self._lock:
            if group not in self._groups:
                raise NotFoundError(f"Group '{group}' not found", "group", group)
            self._groups[group].discard(subject)

    async def get_group(self, group: str) -> SchemaGroup:
        members = self._groups.get(group)
        if members is None:
            raise NotFoundError(f"Group '{group}' not found", "group", group)
        return SchemaGroup(name=group, subjects=frozenset(members))

    async def groups(self) -> List[str]:
        return sorted(self._groups)

    async def close(self) -> None:
        logger.debug("InMemorySchemaStore closed")
