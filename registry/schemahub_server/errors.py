"""
Error types for the SchemaHub server.

This module defines every exception the registry core raises:
- RegistryError: Base exception
- IncompatibleSchemaError: Candidate schema rejected by the compatibility policy
- SchemaParseError: Raw definition could not be analyzed into a field model
- StorageConflict: Allocator/store invariant violated
- VersionConflict: Subject changed under a registration (shared store)
- NotFoundError: Unknown schema ID, subject, version or group
- RegistryUnavailable: Storage collaborator failed or timed out
- InvalidRequestError: Malformed request arguments

Invariants:
    - All errors inherit from RegistryError
    - Every error carries a stable code for programmatic handling
    - Compatibility violations are never truncated
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .schema.compat import Violation


class RegistryError(Exception):
    """Base exception for all registry errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "REGISTRY_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.details = details or {}


class IncompatibleSchemaError(RegistryError):
    """Candidate schema violates the subject's compatibility policy.

    Always recoverable by the caller: fix the schema or change the policy.
    Never retried automatically.

    Attributes:
        subject: Subject the registration targeted
        violations: Every field-level violation found, across all baselines
    """

    code = "INCOMPATIBLE_SCHEMA"

    def __init__(self, subject: str, violations: List[Violation]) -> None:
        self.subject = subject
        self.violations = list(violations)
        lines = [str(v) for v in self.violations]
        super().__init__(
            f"Schema for subject '{subject}' rejected with "
            f"{len(self.violations)} violation(s):\n" + "\n".join(lines),
            details={
                "subject": subject,
                "reasons": [v.to_dict() for v in self.violations],
            },
        )

    @property
    def reasons(self) -> List[str]:
        """Human-readable reasons, one per violation."""
        return [str(v) for v in self.violations]


class SchemaParseError(RegistryError):
    """Raw definition could not be analyzed into a field model.

    Raised before any compatibility check runs.
    """

    code = "PARSE_ERROR"

    def __init__(self, message: str, schema_format: Optional[str] = None) -> None:
        super().__init__(message, details={"format": schema_format})
        self.schema_format = schema_format


class StorageConflict(RegistryError):
    """An allocator or store invariant was violated.

    Raised for duplicate IDs, duplicate or non-contiguous versions and ID
    exhaustion. Treated as fatal for the registration that hit it; the caller
    may retry the registration from scratch.
    """

    code = "STORAGE_CONFLICT"


class VersionConflict(StorageConflict):
    """The subject changed between the compatibility check and the append.

    Raised by a store when another writer (typically a second registry
    instance on the same database) appended to the subject, or registered the
    same content, after the caller read its baselines. The manager re-runs the
    registration against the new state.

    Attributes:
        subject: Subject that changed
        expected_version: Head version the caller checked against
        actual_version: Head version found inside the append transaction
    """

    def __init__(self, subject: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Subject '{subject}' moved from version {expected_version} to "
            f"{actual_version} during registration",
            details={
                "subject": subject,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.subject = subject
        self.expected_version = expected_version
        self.actual_version = actual_version


class NotFoundError(RegistryError):
    """Requested schema ID, subject, version or group does not exist."""

    code = "NOT_FOUND"

    def __init__(self, message: str, resource_type: str, resource_id: Any) -> None:
        super().__init__(
            message,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class RegistryUnavailable(RegistryError):
    """Storage or transport collaborator failed or timed out."""

    code = "REGISTRY_UNAVAILABLE"


class InvalidRequestError(RegistryError):
    """Request arguments are malformed (bad mode, bad version, empty subject)."""

    code = "INVALID_ARGUMENT"
