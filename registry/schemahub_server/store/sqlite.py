"""
SQLite schema store for SchemaHub.

This module persists the registry in a single SQLite database file:
- Registered schema records (immutable rows)
- Per-version state (active / purged flags)
- Per-subject compatibility configuration
- Subject groups
- The schema ID high-water mark

Invariants:
    - append() allocates the ID and inserts the record in one
      BEGIN IMMEDIATE transaction; a failed append allocates nothing
    - schemas rows are never updated or deleted
    - UNIQUE(subject, version) and the id primary key back the
      StorageConflict checks
    - append() re-reads the head version and the non-purged content hashes
      inside its transaction, so writers sharing the file stay serialized
      per subject
    - sqlite3.OperationalError (busy, locked, I/O) surfaces as
      RegistryUnavailable

How to change safely:
    - Schema migrations must be backward compatible
    - Use transactions for all write operations
    - Never reset the id_allocator row

Table schema:
    schemas:
        - id INTEGER PRIMARY KEY
        - subject TEXT
        - version INTEGER
        - content_hash TEXT
        - format TEXT
        - raw_definition BLOB
        - fields_json TEXT
        - registered_at INTEGER (Unix ms)
        - UNIQUE (subject, version)

    version_state:
        - subject TEXT
        - version INTEGER
        - active INTEGER (0/1)
        - purged INTEGER (0/1)
        - PRIMARY KEY (subject, version)

    subjects:
        - name TEXT PRIMARY KEY
        - compatibility TEXT (NULL = registry default)

    subject_groups:
        - group_name TEXT
        - subject TEXT (NULL marks an empty group)

    id_allocator:
        - singleton INTEGER PRIMARY KEY (always 1)
        - high_water_mark INTEGER
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional

from ..errors import NotFoundError, RegistryUnavailable, StorageConflict, VersionConflict
from ..schema.types import (
    CompatibilityMode,
    FieldDescriptor,
    SchemaDraft,
    SchemaFormat,
    SchemaGroup,
    SchemaRecord,
)
from .allocator import IdAllocator, _check_capacity

logger = logging.getLogger(__name__)


class SqliteIdAllocator:
    """ID allocator backed by the store's id_allocator table.

    Standalone next() calls run their own transaction; the owning store
    calls allocate_in() inside its append transaction instead.
    """

    def __init__(self, store: SqliteSchemaStore) -> None:
        self._store = store
        self._lock = threading.Lock()

    @property
    def store(self) -> SqliteSchemaStore:
        return self._store

    @property
    def high_water_mark(self) -> int:
        with self._store._get_connection() as conn:
            row = conn.execute(
                "SELECT high_water_mark FROM id_allocator WHERE singleton = 1"
            ).fetchone()
            return row[0] if row else 0

    def allocate_in(self, conn: sqlite3.Connection) -> int:
        """Allocate an ID inside an open write transaction."""
        row = conn.execute(
            "SELECT high_water_mark FROM id_allocator WHERE singleton = 1"
        ).fetchone()
        schema_id = _check_capacity(row[0] if row else 0)
        conn.execute(
            "UPDATE id_allocator SET high_water_mark = ? WHERE singleton = 1",
            (schema_id,),
        )
        return schema_id

    def next(self) -> int:
        with self._lock, self._store._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                schema_id = self.allocate_in(conn)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            return schema_id


class SqliteSchemaStore:
    """SQLite implementation of SchemaStore.

    Thread safety:
        Each operation opens its own connection. SQLite serializes writers
        (BEGIN IMMEDIATE); readers run concurrently in WAL mode.

    Example:
        >>> store = SqliteSchemaStore("/var/lib/schemahub")
        >>> record = await store.append(draft, store.allocator)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "registry.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store and create tables if needed.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.allocator = SqliteIdAllocator(self)

        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info(f"Initialized schema store: {self.db_path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the registry database.

        Raises:
            RegistryUnavailable: If the database cannot be opened, or an
                operation fails on a busy, locked or unreadable database
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise RegistryUnavailable(f"Cannot open schema store {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = FULL")
            yield conn
        except sqlite3.OperationalError as e:
            logger.error(f"Schema store operation failed: {e}", extra={"db_path": str(self.db_path)})
            raise RegistryUnavailable(f"Schema store {self.db_path} unavailable: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS schemas (
                id INTEGER PRIMARY KEY,
                subject TEXT NOT NULL,
                version INTEGER NOT NULL,
                content_hash TEXT NOT NULL,
                format TEXT NOT NULL,
                raw_definition BLOB NOT NULL,
                fields_json TEXT NOT NULL DEFAULT '[]',
                registered_at INTEGER NOT NULL,
                UNIQUE (subject, version)
            );

            CREATE INDEX IF NOT EXISTS idx_schemas_hash ON schemas(subject, content_hash);

            CREATE TABLE IF NOT EXISTS version_state (
                subject TEXT NOT NULL,
                version INTEGER NOT NULL,
                active INTEGER NOT NULL DEFAULT 1,
                purged INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (subject, version)
            );

            CREATE TABLE IF NOT EXISTS subjects (
                name TEXT PRIMARY KEY,
                compatibility TEXT
            );

            CREATE TABLE IF NOT EXISTS subject_groups (
                group_name TEXT NOT NULL,
                subject TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_groups_member
                ON subject_groups(group_name, IFNULL(subject, ''));

            CREATE TABLE IF NOT EXISTS id_allocator (
                singleton INTEGER PRIMARY KEY CHECK (singleton = 1),
                high_water_mark INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO id_allocator (singleton, high_water_mark) VALUES (1, 0);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SchemaRecord:
        return SchemaRecord(
            id=row["id"],
            subject=row["subject"],
            version=row["version"],
            content_hash=row["content_hash"],
            format=SchemaFormat.from_str(row["format"]),
            raw_definition=bytes(row["raw_definition"]),
            fields=tuple(FieldDescriptor.from_dict(f) for f in json.loads(row["fields_json"])),
            registered_at=row["registered_at"],
        )

    def _insert(self, conn: sqlite3.Connection, record: SchemaRecord) -> None:
        """Insert a record inside an open write transaction."""
        expected = self._head(conn, record.subject) + 1
        if record.version != expected:
            raise StorageConflict(
                f"Non-contiguous version {record.version} for subject "
                f"'{record.subject}' (expected {expected})",
                details={"subject": record.subject, "version": record.version},
            )
        try:
            conn.execute(
                """
                INSERT INTO schemas (id, subject, version, content_hash, format,
                                     raw_definition, fields_json, registered_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.subject,
                    record.version,
                    record.content_hash,
                    record.format.value,
                    sqlite3.Binary(record.raw_definition),
                    json.dumps([f.to_dict() for f in record.fields]),
                    record.registered_at,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise StorageConflict(
                f"Schema id {record.id} or version {record.subject}/{record.version} "
                f"already exists: {e}",
                details={"id": record.id, "subject": record.subject, "version": record.version},
            ) from e
        conn.execute(
            "INSERT INTO version_state (subject, version) VALUES (?, ?)",
            (record.subject, record.version),
        )
        conn.execute(
            "INSERT OR IGNORE INTO subjects (name) VALUES (?)",
            (record.subject,),
        )

    def _write(self, fn: Any, *args: Any) -> Any:
        """Run fn(conn, *args) in a BEGIN IMMEDIATE transaction."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = fn(conn, *args)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            return result

    async def put(self, record: SchemaRecord) -> int:
        self._write(self._insert, record)
        return record.id

    @staticmethod
    def _head(conn: sqlite3.Connection, subject: str) -> int:
        row = conn.execute(
            "SELECT COALESCE(MAX(version), 0) FROM schemas WHERE subject = ?",
            (subject,),
        ).fetchone()
        return row[0]

    async def append(
        self,
        draft: SchemaDraft,
        allocator: IdAllocator,
        expected_version: Optional[int] = None,
    ) -> SchemaRecord:
        def _append(conn: sqlite3.Connection) -> SchemaRecord:
            head = self._head(conn, draft.subject)
            if expected_version is not None and head != expected_version:
                raise VersionConflict(draft.subject, expected_version, head)
            # Purged versions release their content hash
            duplicate = conn.execute(
                """
                SELECT s.id FROM schemas s
                JOIN version_state vs ON vs.subject = s.subject AND vs.version = s.version
                WHERE s.subject = ? AND s.content_hash = ? AND vs.purged = 0
                LIMIT 1
                """,
                (draft.subject, draft.content_hash),
            ).fetchone()
            if duplicate is not None:
                raise StorageConflict(
                    f"Content already registered under subject '{draft.subject}'",
                    details={"subject": draft.subject, "id": duplicate[0]},
                )
            if isinstance(allocator, SqliteIdAllocator) and allocator.store is self:
                schema_id = allocator.allocate_in(conn)
            else:
                schema_id = allocator.next()
            record = draft.to_record(schema_id, head + 1, int(time.time() * 1000))
            self._insert(conn, record)
            return record

        record = self._write(_append)
        logger.debug(
            "Appended schema",
            extra={"subject": record.subject, "version": record.version, "id": record.id},
        )
        return record

    async def head_version(self, subject: str) -> int:
        with self._get_connection() as conn:
            return self._head(conn, subject)

    async def get_by_id(self, schema_id: int) -> SchemaRecord:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM schemas WHERE id = ?", (schema_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Schema id {schema_id} not found", "schema", schema_id)
        return self._row_to_record(row)

    def _require_subject(self, conn: sqlite3.Connection, subject: str) -> None:
        row = conn.execute("SELECT 1 FROM schemas WHERE subject = ? LIMIT 1", (subject,)).fetchone()
        if row is None:
            raise NotFoundError(f"Subject '{subject}' not found", "subject", subject)

    async def get_by_subject_version(self, subject: str, version: int) -> SchemaRecord:
        with self._get_connection() as conn:
            self._require_subject(conn, subject)
            row = conn.execute(
                "SELECT * FROM schemas WHERE subject = ? AND version = ?",
                (subject, version),
            ).fetchone()
        if row is None:
            raise NotFoundError(
                f"Version {version} of subject '{subject}' not found",
                "version",
                f"{subject}/{version}",
            )
        return self._row_to_record(row)

    async def latest(self, subject: str) -> SchemaRecord:
        with self._get_connection() as conn:
            self._require_subject(conn, subject)
            row = conn.execute(
                """
                SELECT s.* FROM schemas s
                JOIN version_state vs ON vs.subject = s.subject AND vs.version = s.version
                WHERE s.subject = ? AND vs.active = 1 AND vs.purged = 0
                ORDER BY s.version DESC LIMIT 1
                """,
                (subject,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Subject '{subject}' has no active versions", "subject", subject)
        return self._row_to_record(row)

    async def history(self, subject: str) -> List[SchemaRecord]:
        with self._get_connection() as conn:
            self._require_subject(conn, subject)
            rows = conn.execute(
                """
                SELECT s.* FROM schemas s
                JOIN version_state vs ON vs.subject = s.subject AND vs.version = s.version
                WHERE s.subject = ? AND vs.purged = 0
                ORDER BY s.version ASC
                """,
                (subject,),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    async def find_by_hash(self, subject: str, content_hash: str) -> Optional[SchemaRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT s.* FROM schemas s
                JOIN version_state vs ON vs.subject = s.subject AND vs.version = s.version
                WHERE s.subject = ? AND s.content_hash = ? AND vs.purged = 0
                ORDER BY s.version ASC LIMIT 1
                """,
                (subject, content_hash),
            ).fetchone()
        return self._row_to_record(row) if row else None

    async def versions(self, subject: str, include_inactive: bool = False) -> List[int]:
        query = "SELECT version FROM version_state WHERE subject = ? AND purged = 0"
        if not include_inactive:
            query += " AND active = 1"
        with self._get_connection() as conn:
            self._require_subject(conn, subject)
            rows = conn.execute(query + " ORDER BY version ASC", (subject,)).fetchall()
        return [r[0] for r in rows]

    async def subjects(self) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT DISTINCT subject FROM schemas ORDER BY subject").fetchall()
        return [r[0] for r in rows]

    async def get_compatibility(self, subject: str) -> Optional[CompatibilityMode]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT compatibility FROM subjects WHERE name = ?", (subject,)
            ).fetchone()
        if row is None or row[0] is None:
            return None
        return CompatibilityMode(row[0])

    async def set_compatibility(self, subject: str, mode: CompatibilityMode) -> None:
        def _set(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO subjects (name, compatibility) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET compatibility = excluded.compatibility
                """,
                (subject, mode.value),
            )

        self._write(_set)

    async def is_active(self, subject: str, version: int) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT active, purged FROM version_state WHERE subject = ? AND version = ?",
                (subject, version),
            ).fetchone()
        return bool(row and row["active"] and not row["purged"])

    def _update_state(self, subject: str, version: int, column: str, value: int) -> None:
        def _update(conn: sqlite3.Connection) -> None:
            cursor = conn.execute(
                f"UPDATE version_state SET {column} = ? WHERE subject = ? AND version = ?",
                (value, subject, version),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Version {version} of subject '{subject}' not found",
                    "version",
                    f"{subject}/{version}",
                )

        self._write(_update)

    async def set_active(self, subject: str, version: int, active: bool) -> None:
        self._update_state(subject, version, "active", 1 if active else 0)

    async def mark_purged(self, subject: str, version: int) -> None:
        self._update_state(subject, version, "purged", 1)

    async def add_to_group(self, group: str, subject: str) -> None:
        def _add(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT OR IGNORE INTO subject_groups (group_name, subject) VALUES (?, NULL)",
                (group,),
            )
            conn.execute(
                "INSERT OR IGNORE INTO subject_groups (group_name, subject) VALUES (?, ?)",
                (group, subject),
            )

        self._write(_add)

    async def remove_from_group(self, group: str, subject: str) -> None:
        def _remove(conn: sqlite3.Connection) -> None:
            row = conn.execute(
                "SELECT 1 FROM subject_groups WHERE group_name = ? LIMIT 1", (group,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Group '{group}' not found", "group", group)
            conn.execute(
                "DELETE FROM subject_groups WHERE group_name = ? AND subject = ?",
                (group, subject),
            )

        self._write(_remove)

    async def get_group(self, group: str) -> SchemaGroup:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT subject FROM subject_groups WHERE group_name = ?", (group,)
            ).fetchall()
        if not rows:
            raise NotFoundError(f"Group '{group}' not found", "group", group)
        return SchemaGroup(
            name=group,
            subjects=frozenset(r[0] for r in rows if r[0] is not None),
        )

    async def groups(self) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT group_name FROM subject_groups ORDER BY group_name"
            ).fetchall()
        return [r[0] for r in rows]

    async def close(self) -> None:
        logger.debug(f"SqliteSchemaStore closed: {self.db_path}")
