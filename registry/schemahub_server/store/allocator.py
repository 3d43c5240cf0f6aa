"""
Schema ID allocation for SchemaHub.

An IdAllocator hands out globally unique, strictly increasing schema IDs.
Allocators are explicit objects passed to the store, never process-wide
singletons, so their lifecycle and durability are testable in isolation.

Implementations:
- InMemoryIdAllocator: volatile, for tests and the in-memory store
- FileIdAllocator: persists its high-water mark to a file before handing
  out an ID, so IDs are never reused across restarts

The SQLite store allocates inside its own write transaction instead (see
store/sqlite.py), so allocation and persistence commit together.

Invariants:
    - next() is linearizable: concurrent callers never get the same ID
    - An ID is durably recorded as allocated before any caller sees it
    - IDs never exceed the unsigned 32-bit range
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..errors import StorageConflict
from ..schema.types import MAX_SCHEMA_ID

logger = logging.getLogger(__name__)


@runtime_checkable
class IdAllocator(Protocol):
    """Protocol for schema ID allocators."""

    def next(self) -> int:
        """Allocate the next schema ID.

        Raises:
            StorageConflict: If the ID space is exhausted
        """
        ...

    @property
    def high_water_mark(self) -> int:
        """Highest ID handed out so far (0 if none)."""
        ...


def _check_capacity(current: int) -> int:
    candidate = current + 1
    if candidate > MAX_SCHEMA_ID:
        raise StorageConflict(
            f"Schema ID space exhausted at {current}",
            details={"high_water_mark": current},
        )
    return candidate


class InMemoryIdAllocator:
    """Volatile allocator guarded by a lock.

    Example:
        >>> allocator = InMemoryIdAllocator()
        >>> allocator.next()
        1
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError(f"start must be non-negative, got {start}")
        self._high_water_mark = start
        self._lock = threading.Lock()

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark

    def next(self) -> int:
        with self._lock:
            self._high_water_mark = _check_capacity(self._high_water_mark)
            return self._high_water_mark


class FileIdAllocator:
    """Allocator whose high-water mark survives process restarts.

    The new mark is written to a temporary file, fsynced and atomically
    renamed over the state file before next() returns.

    Attributes:
        path: State file holding the decimal high-water mark
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._high_water_mark = self._load()

    def _load(self) -> int:
        if not self.path.exists():
            return 0
        text = self.path.read_text(encoding="ascii").strip()
        try:
            value = int(text or "0")
        except ValueError as e:
            raise StorageConflict(
                f"Corrupt ID allocator state in {self.path}: {text!r}"
            ) from e
        logger.info(f"Resumed ID allocator at high-water mark {value}", extra={"path": str(self.path)})
        return value

    def _persist(self, value: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="ascii") as fh:
            fh.write(str(value))
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self.path)

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark

    def next(self) -> int:
        with self._lock:
            candidate = _check_capacity(self._high_water_mark)
            self._persist(candidate)
            self._high_water_mark = candidate
            return candidate
