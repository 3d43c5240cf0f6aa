"""
Error types for the SchemaHub SDK.

This module defines all exception types raised by the SDK:
- SchemaHubError: Base exception
- RegistryUnavailable: Registry unreachable, failing or too slow
- NotFoundError: Unknown schema ID, subject or version
- IncompatibleSchemaError: Registration rejected by the compatibility policy
- SchemaParseError: Registry could not parse the submitted definition
- InvalidRequestError: Registry rejected the request arguments
- MalformedEnvelope: Bytes are not a valid wire envelope

Invariants:
    - All errors inherit from SchemaHubError
    - Errors include context for debugging
    - Rejections carry every violation the registry reported
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SchemaHubError(Exception):
    """Base exception for all SchemaHub SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SCHEMAHUB_ERROR"
        self.details = details or {}


class RegistryUnavailable(SchemaHubError):
    """The registry could not serve the request.

    Raised when:
    - The registry is unreachable
    - A lookup exceeds the configured timeout
    - The registry answers with a 5xx status
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="REGISTRY_UNAVAILABLE",
            details={"address": address},
        )
        self.address = address


class NotFoundError(SchemaHubError):
    """Resource not found.

    Raised when:
    - Schema ID doesn't exist
    - Subject or version doesn't exist
    - Group doesn't exist
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class IncompatibleSchemaError(SchemaHubError):
    """Registration rejected by the subject's compatibility mode.

    Attributes:
        subject: Subject the registration targeted
        violations: One dict per violation (version, field, rule, message)
    """

    def __init__(
        self,
        message: str,
        subject: Optional[str] = None,
        violations: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        violations = violations or []
        super().__init__(
            message,
            code="INCOMPATIBLE_SCHEMA",
            details={"subject": subject, "reasons": violations},
        )
        self.subject = subject
        self.violations = violations

    @property
    def reasons(self) -> List[str]:
        """Human-readable reasons, one per violation."""
        return [
            f"[v{v.get('version')}] {v.get('rule')}: {v.get('field')} - {v.get('message')}"
            for v in self.violations
        ]


class SchemaParseError(SchemaHubError):
    """The registry could not analyze the submitted definition."""

    def __init__(self, message: str, schema_format: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="PARSE_ERROR",
            details={"format": schema_format},
        )
        self.schema_format = schema_format


class InvalidRequestError(SchemaHubError):
    """The registry rejected the request arguments."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_ARGUMENT")


class MalformedEnvelope(SchemaHubError):
    """Bytes do not form a valid wire envelope.

    Raised when:
    - Fewer than 5 bytes are supplied
    - The leading marker byte is not 0x00
    """

    def __init__(self, message: str, length: Optional[int] = None) -> None:
        super().__init__(
            message,
            code="MALFORMED_ENVELOPE",
            details={"length": length},
        )
        self.length = length
