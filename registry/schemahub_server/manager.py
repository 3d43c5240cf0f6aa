"""
Subject and group manager for SchemaHub.

The manager owns the subject namespace: it sequences versions, applies the
per-subject compatibility policy, and is the only component that writes
schemas to the store.

Registration flow:
    1. Analyze the raw definition into a FieldModel (parse errors abort)
    2. Hash the content; an existing record under the subject is returned
    3. Resolve the subject's mode (explicit or registry default)
    4. Run the compatibility checker against the baselines the mode selects
    5. Append through the store, which allocates the ID atomically

Invariants:
    - Steps 2-5 run under the subject's own lock; distinct subjects
      never wait on each other and there is no global lock
    - Reads never take a lock
    - A rejected registration changes no state
    - A VersionConflict (another writer on a shared store moved the subject)
      re-runs steps 2-5 a bounded number of times; any other StorageConflict
      is logged and re-raised, never retried

How to change safely:
    - Keep the idempotence lookup inside the lock as well as before it
    - New baseline selection rules belong in _baselines(), not in register()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import (
    InvalidRequestError,
    NotFoundError,
    RegistryUnavailable,
    StorageConflict,
    VersionConflict,
)
from .schema.analyzers import AnalyzerTable
from .schema.compat import Baseline, CompatibilityResult, check_compatibility
from .schema.types import (
    CompatibilityMode,
    FieldModel,
    SchemaDraft,
    SchemaFormat,
    SchemaGroup,
    SchemaRecord,
    content_hash,
)
from .store.allocator import IdAllocator
from .store.base import SchemaStore

logger = logging.getLogger(__name__)

LATEST = "latest"


@dataclass(frozen=True)
class RegisteredSchema:
    """Outcome of a successful registration.

    Attributes:
        id: Schema ID of the (new or existing) record
        version: Version of the record within its subject
        subject: Subject name
        created: False if an identical definition was already registered
    """

    id: int
    version: int
    subject: str
    created: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "version": self.version}


@dataclass
class ManagerStats:
    """Registration counters."""

    registrations: int = 0
    idempotent_hits: int = 0
    rejections: int = 0
    storage_conflicts: int = 0
    version_conflicts: int = 0
    store_unavailable: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "registrations": self.registrations,
            "idempotent_hits": self.idempotent_hits,
            "rejections": self.rejections,
            "storage_conflicts": self.storage_conflicts,
            "version_conflicts": self.version_conflicts,
            "store_unavailable": self.store_unavailable,
        }


def _validate_subject(subject: str) -> None:
    if not subject or not subject.strip():
        raise InvalidRequestError("Subject name cannot be empty")


def _parse_version(version: Union[int, str]) -> Union[int, str]:
    """Normalize a version selector to a positive int or LATEST."""
    if isinstance(version, str):
        if version.lower() == LATEST:
            return LATEST
        try:
            version = int(version)
        except ValueError:
            raise InvalidRequestError(f"Invalid version '{version}'")
    if isinstance(version, bool) or version <= 0:
        raise InvalidRequestError(f"Version must be a positive integer, got {version}")
    return version


class SubjectManager:
    """Coordinates registration, policy and lifecycle of subjects.

    Example:
        >>> manager = SubjectManager(InMemorySchemaStore(), InMemoryIdAllocator())
        >>> registered = await manager.register("orders", avro_bytes, SchemaFormat.AVRO)
        >>> registered.version
        1
    """

    def __init__(
        self,
        store: SchemaStore,
        allocator: IdAllocator,
        analyzers: Optional[AnalyzerTable] = None,
        default_mode: CompatibilityMode = CompatibilityMode.BACKWARD,
        max_append_attempts: int = 5,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Schema store (single source of truth)
            allocator: Schema ID allocator handed to store.append()
            analyzers: Format analyzers (defaults to AVRO and JSON)
            default_mode: Mode for subjects without an explicit mode
            max_append_attempts: Check-and-append rounds before a registration
                that keeps hitting VersionConflict fails
        """
        self.store = store
        self.allocator = allocator
        self.analyzers = analyzers or AnalyzerTable.default()
        self.default_mode = default_mode
        self.max_append_attempts = max_append_attempts
        self._locks: Dict[str, asyncio.Lock] = {}
        self._stats = ManagerStats()

    def _lock_for(self, subject: str) -> asyncio.Lock:
        lock = self._locks.get(subject)
        if lock is None:
            lock = self._locks.setdefault(subject, asyncio.Lock())
        return lock

    def _model_of(self, record: SchemaRecord) -> FieldModel:
        """Field model of a stored record as the checker should see it."""
        if not self.analyzers.supports(record.format):
            return FieldModel.opaque()
        return record.field_model

    async def _has_subject(self, subject: str) -> bool:
        try:
            await self.store.versions(subject, include_inactive=True)
        except NotFoundError:
            return False
        return True

    async def _baselines(self, subject: str, mode: CompatibilityMode) -> List[Baseline]:
        """Prior versions the mode compares a candidate against.

        Transitive modes use the full history (inactive versions included,
        purged ones excluded); other modes use the latest active version.
        """
        if mode is CompatibilityMode.NONE:
            return []
        try:
            if mode.is_transitive:
                records = await self.store.history(subject)
            else:
                records = [await self.store.latest(subject)]
        except NotFoundError:
            return []
        return [Baseline(r.version, self._model_of(r)) for r in records]

    def _analyze(self, raw_definition: Union[bytes, str], schema_format: Any) -> tuple:
        if isinstance(raw_definition, str):
            raw_definition = raw_definition.encode("utf-8")
        if not isinstance(schema_format, SchemaFormat):
            schema_format = SchemaFormat.from_str(schema_format)
        model = self.analyzers.analyze(raw_definition, schema_format)
        return raw_definition, schema_format, model

    async def register(
        self,
        subject: str,
        raw_definition: Union[bytes, str],
        schema_format: Union[SchemaFormat, str] = SchemaFormat.AVRO,
    ) -> RegisteredSchema:
        """Register a schema under a subject.

        Args:
            subject: Subject name
            raw_definition: Schema definition bytes (str is UTF-8 encoded)
            schema_format: Format of the definition

        Returns:
            RegisteredSchema; created=False for an idempotent hit

        Raises:
            SchemaParseError: If the definition cannot be analyzed
            IncompatibleSchemaError: If the candidate violates the subject's mode
            StorageConflict: If the store rejects the append
            RegistryUnavailable: If the store cannot be reached
        """
        _validate_subject(subject)
        raw, fmt, model = self._analyze(raw_definition, schema_format)
        digest = content_hash(fmt, raw)
        draft = SchemaDraft(
            subject=subject,
            content_hash=digest,
            format=fmt,
            raw_definition=raw,
            fields=model.fields,
        )

        try:
            existing = await self.store.find_by_hash(subject, digest)
            if existing is not None:
                return self._idempotent_hit(existing)

            async with self._lock_for(subject):
                record, created = await self._check_and_append(draft, model)
        except RegistryUnavailable as e:
            self._stats.store_unavailable += 1
            logger.error(
                f"Schema store unavailable registering subject '{subject}': {e.message}",
                extra={"subject": subject},
            )
            raise

        if not created:
            return self._idempotent_hit(record)

        self._stats.registrations += 1
        logger.info(
            f"Registered {subject} v{record.version} as id {record.id}",
            extra={"subject": subject, "version": record.version, "id": record.id},
        )
        return RegisteredSchema(record.id, record.version, subject, created=True)

    async def _check_and_append(
        self, draft: SchemaDraft, model: FieldModel
    ) -> Tuple[SchemaRecord, bool]:
        """Idempotence lookup, compatibility check and append for one draft.

        The append names the head version the check saw. When another writer
        on a shared store moved the subject in between, the whole sequence
        runs again against the new state.
        """
        subject = draft.subject
        for attempt in range(1, self.max_append_attempts + 1):
            existing = await self.store.find_by_hash(subject, draft.content_hash)
            if existing is not None:
                return existing, False

            head = await self.store.head_version(subject)
            mode = await self.get_compatibility(subject)
            result = check_compatibility(model, await self._baselines(subject, mode), mode)
            if not result.compatible:
                self._stats.rejections += 1
                logger.warning(
                    f"Rejected schema for subject '{subject}' "
                    f"({len(result.violations)} violation(s))",
                    extra={"subject": subject, "mode": mode.value},
                )
                result.raise_for_incompatible(subject)

            try:
                record = await self.store.append(draft, self.allocator, expected_version=head)
                return record, True
            except VersionConflict as e:
                self._stats.version_conflicts += 1
                logger.info(
                    f"Subject '{subject}' changed during registration, "
                    f"re-checking (attempt {attempt}/{self.max_append_attempts})",
                    extra={"subject": subject, **e.details},
                )
            except StorageConflict as e:
                self._stats.storage_conflicts += 1
                logger.error(
                    f"Storage conflict registering subject '{subject}': {e.message}",
                    extra={"subject": subject, **e.details},
                )
                raise

        self._stats.storage_conflicts += 1
        logger.error(
            f"Giving up on subject '{subject}' after {self.max_append_attempts} conflicting appends",
            extra={"subject": subject},
        )
        raise StorageConflict(
            f"Subject '{subject}' kept changing during registration",
            details={"subject": subject, "attempts": self.max_append_attempts},
        )

    def _idempotent_hit(self, record: SchemaRecord) -> RegisteredSchema:
        self._stats.idempotent_hits += 1
        logger.debug(f"Idempotent registration of {record.subject} v{record.version}")
        return RegisteredSchema(record.id, record.version, record.subject, created=False)

    async def test_compatibility(
        self,
        subject: str,
        raw_definition: Union[bytes, str],
        schema_format: Union[SchemaFormat, str] = SchemaFormat.AVRO,
        version: Union[int, str] = LATEST,
    ) -> CompatibilityResult:
        """Dry-run a registration's compatibility check.

        With version="latest" the baselines are chosen by the subject's mode;
        with an explicit version only that version is compared.
        """
        _validate_subject(subject)
        selector = _parse_version(version)
        _, _, model = self._analyze(raw_definition, schema_format)
        mode = await self.get_compatibility(subject)

        if selector == LATEST:
            baselines = await self._baselines(subject, mode)
        else:
            record = await self.store.get_by_subject_version(subject, selector)
            baselines = [Baseline(record.version, self._model_of(record))]
        return check_compatibility(model, baselines, mode)

    async def set_compatibility(
        self,
        subject: str,
        mode: Union[CompatibilityMode, str],
    ) -> CompatibilityMode:
        _validate_subject(subject)
        if not isinstance(mode, CompatibilityMode):
            try:
                mode = CompatibilityMode.from_str(mode)
            except ValueError as e:
                raise InvalidRequestError(str(e))
        await self.store.set_compatibility(subject, mode)
        logger.info(f"Compatibility for '{subject}' set to {mode.value}")
        return mode

    async def get_compatibility(self, subject: str) -> CompatibilityMode:
        """Effective mode of a subject (explicit, else the registry default)."""
        mode = await self.store.get_compatibility(subject)
        return mode if mode is not None else self.default_mode

    async def _require_version(self, subject: str, version: Union[int, str]) -> int:
        selector = _parse_version(version)
        if selector == LATEST:
            raise InvalidRequestError("A concrete version is required")
        # Raises NotFoundError for unknown subjects or versions
        await self.store.get_by_subject_version(subject, selector)
        if selector not in await self.store.versions(subject, include_inactive=True):
            raise InvalidRequestError(f"Version {selector} of '{subject}' has been purged")
        return selector

    async def deactivate(self, subject: str, version: Union[int, str]) -> None:
        """Soft-retire a version: excluded from latest(), kept in history()."""
        number = await self._require_version(subject, version)
        async with self._lock_for(subject):
            await self.store.set_active(subject, number, False)
        logger.info(f"Deactivated {subject} v{number}")

    async def reactivate(self, subject: str, version: Union[int, str]) -> None:
        number = await self._require_version(subject, version)
        async with self._lock_for(subject):
            await self.store.set_active(subject, number, True)
        logger.info(f"Reactivated {subject} v{number}")

    async def purge(self, subject: str, version: Union[int, str]) -> None:
        """Drop an inactive version from history() and transitive checks.

        The record stays readable by ID so already-encoded data can be decoded.

        Raises:
            InvalidRequestError: If the version is still active
        """
        number = await self._require_version(subject, version)
        async with self._lock_for(subject):
            if await self.store.is_active(subject, number):
                raise InvalidRequestError(
                    f"Version {number} of '{subject}' is active; deactivate it before purging"
                )
            await self.store.mark_purged(subject, number)
        logger.info(f"Purged {subject} v{number}")

    async def get_schema(self, schema_id: int) -> SchemaRecord:
        return await self.store.get_by_id(schema_id)

    async def get_version(self, subject: str, version: Union[int, str] = LATEST) -> SchemaRecord:
        selector = _parse_version(version)
        if selector == LATEST:
            return await self.store.latest(subject)
        return await self.store.get_by_subject_version(subject, selector)

    async def versions(self, subject: str, include_inactive: bool = False) -> List[int]:
        return await self.store.versions(subject, include_inactive=include_inactive)

    async def subjects(self) -> List[str]:
        return await self.store.subjects()

    async def add_to_group(self, group: str, subject: str) -> SchemaGroup:
        if not group:
            raise InvalidRequestError("Group name cannot be empty")
        _validate_subject(subject)
        if not await self._has_subject(subject):
            raise NotFoundError(f"Subject '{subject}' not found", "subject", subject)
        await self.store.add_to_group(group, subject)
        return await self.store.get_group(group)

    async def remove_from_group(self, group: str, subject: str) -> SchemaGroup:
        await self.store.remove_from_group(group, subject)
        return await self.store.get_group(group)

    async def get_group(self, group: str) -> SchemaGroup:
        return await self.store.get_group(group)

    async def groups(self) -> List[str]:
        return await self.store.groups()

    def stats(self) -> Dict[str, int]:
        return self._stats.to_dict()
