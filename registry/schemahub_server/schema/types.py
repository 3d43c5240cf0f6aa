"""
Core type definitions for the SchemaHub registry.

This module defines the foundational types shared by every component:
- SchemaFormat: Tag of the schema description language
- CompatibilityMode: Policy governing which schema changes are accepted
- FieldDescriptor: One field of a schema, in format-agnostic form
- FieldModel: The normalized structure the compatibility checker diffs
- SchemaRecord: An immutable registered schema version
- SchemaGroup: Organizational namespace over subjects

Invariants:
    - Schema IDs are positive and fit in an unsigned 32-bit integer
    - Versions start at 1 within a subject
    - Field order is retained for display but never significant for comparison
    - content_hash is the sha256 of the format tag and the raw definition bytes

How to change safely:
    - New formats only add a SchemaFormat member and an analyzer
    - Never change the content hash recipe; it defines idempotence
    - Add optional fields to records with defaults in from_dict()

Example:
    >>> from registry.schemahub_server.schema.types import FieldModel, SchemaFormat, field
    >>> model = FieldModel(
    ...     SchemaFormat.AVRO,
    ...     fields=(
    ...         field("order_id", "string"),
    ...         field("currency", "string", optional=True, default="USD"),
    ...     ),
    ... )
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

MAX_SCHEMA_ID = 2**32 - 1

_NO_DEFAULT = object()


class SchemaFormat(Enum):
    """Schema description languages known to the registry.

    OPAQUE schemas are stored and versioned but never diffed.
    """

    AVRO = "AVRO"
    PROTOBUF = "PROTOBUF"
    JSON = "JSON"
    OPAQUE = "OPAQUE"

    @classmethod
    def from_str(cls, value: str | None) -> SchemaFormat:
        """Convert a format name to SchemaFormat.

        Unknown or missing names map to OPAQUE.

        Args:
            value: Format name (case-insensitive), or None

        Returns:
            Corresponding SchemaFormat
        """
        if not value:
            return cls.OPAQUE
        try:
            return cls(value.upper())
        except ValueError:
            return cls.OPAQUE


class CompatibilityMode(Enum):
    """Compatibility policies for a subject."""

    NONE = "NONE"
    BACKWARD = "BACKWARD"
    FORWARD = "FORWARD"
    FULL = "FULL"
    BACKWARD_TRANSITIVE = "BACKWARD_TRANSITIVE"
    FORWARD_TRANSITIVE = "FORWARD_TRANSITIVE"
    FULL_TRANSITIVE = "FULL_TRANSITIVE"

    @property
    def is_transitive(self) -> bool:
        """Whether the mode checks against every historical version."""
        return self.value.endswith("_TRANSITIVE")

    @property
    def checks_backward(self) -> bool:
        """Whether new readers must be able to read old data."""
        return self in (
            CompatibilityMode.BACKWARD,
            CompatibilityMode.BACKWARD_TRANSITIVE,
            CompatibilityMode.FULL,
            CompatibilityMode.FULL_TRANSITIVE,
        )

    @property
    def checks_forward(self) -> bool:
        """Whether old readers must be able to read new data."""
        return self in (
            CompatibilityMode.FORWARD,
            CompatibilityMode.FORWARD_TRANSITIVE,
            CompatibilityMode.FULL,
            CompatibilityMode.FULL_TRANSITIVE,
        )

    @classmethod
    def from_str(cls, value: str) -> CompatibilityMode:
        """Convert a mode name to CompatibilityMode.

        Raises:
            ValueError: If value is not a valid mode
        """
        try:
            return cls(value.upper())
        except (ValueError, AttributeError):
            valid = [m.value for m in cls]
            raise ValueError(f"Invalid compatibility mode '{value}'. Valid modes: {valid}")


@dataclass(frozen=True)
class FieldDescriptor:
    """One field of a schema in format-agnostic form.

    Attributes:
        name: Field name, the identity used for diffing
        type: Normalized type tag (e.g. "string", "long", "array<string>")
        optional: Whether the field may be absent/null
        has_default: Whether the definition declares a default value
        default_value: The declared default (only meaningful if has_default)
    """

    name: str
    type: str
    optional: bool = False
    has_default: bool = False
    default_value: Any = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if not self.type:
            raise ValueError(f"Field '{self.name}' has an empty type tag")

    @property
    def tolerates_absence(self) -> bool:
        """Whether readers can cope with this field missing from the data."""
        return self.optional or self.has_default

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "type": self.type}
        if self.optional:
            result["optional"] = True
        if self.has_default:
            result["default"] = self.default_value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDescriptor:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            type=data["type"],
            optional=data.get("optional", False),
            has_default="default" in data,
            default_value=data.get("default"),
        )


def field(
    name: str,
    type: str,
    *,
    optional: bool = False,
    default: Any = _NO_DEFAULT,
) -> FieldDescriptor:
    """Convenience function to create a FieldDescriptor.

    Passing ``default`` (even ``None``) marks the field as having a default.

    Example:
        >>> amount = field("amount", "int")
        >>> currency = field("currency", "string", optional=True, default="USD")
    """
    has_default = default is not _NO_DEFAULT
    return FieldDescriptor(
        name=name,
        type=type,
        optional=optional,
        has_default=has_default,
        default_value=default if has_default else None,
    )


@dataclass(frozen=True)
class FieldModel:
    """Normalized structure of a schema, as consumed by the checker.

    Attributes:
        format: Format the model was analyzed from
        fields: Field descriptors in source order

    Invariants:
        - Field names are unique within a model
    """

    format: SchemaFormat
    fields: tuple[FieldDescriptor, ...] = dataclass_field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate field name in field model")

    @property
    def is_opaque(self) -> bool:
        """Whether this model carries no structure to diff."""
        return self.format is SchemaFormat.OPAQUE

    def by_name(self) -> dict[str, FieldDescriptor]:
        """Map of field name to descriptor."""
        return {f.name: f for f in self.fields}

    def get_field(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format.value,
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldModel:
        return cls(
            format=SchemaFormat.from_str(data.get("format")),
            fields=tuple(FieldDescriptor.from_dict(f) for f in data.get("fields", [])),
        )

    @classmethod
    def opaque(cls) -> FieldModel:
        """An empty model for formats the registry does not examine."""
        return cls(SchemaFormat.OPAQUE)


def content_hash(schema_format: SchemaFormat, raw_definition: bytes) -> str:
    """Compute the content hash of a raw definition.

    The format tag is mixed in so identical bytes registered under a
    different format are a distinct schema.

    Returns:
        Lowercase hex sha256 digest (64 characters)
    """
    digest = hashlib.sha256()
    digest.update(schema_format.value.encode("ascii"))
    digest.update(b"\x00")
    digest.update(raw_definition)
    return digest.hexdigest()


@dataclass(frozen=True)
class SchemaRecord:
    """An immutable, registered schema version.

    Attributes:
        id: Globally unique schema ID (never reused)
        subject: Subject the schema is registered under
        version: Per-subject version, starting at 1
        content_hash: sha256 hex digest of the canonical form
        format: Schema description language
        raw_definition: The definition bytes exactly as registered
        fields: Analyzed field descriptors (empty for OPAQUE)
        registered_at: Registration timestamp (Unix ms)
    """

    id: int
    subject: str
    version: int
    content_hash: str
    format: SchemaFormat
    raw_definition: bytes
    fields: tuple[FieldDescriptor, ...] = ()
    registered_at: int = 0

    def __post_init__(self) -> None:
        if not 0 < self.id <= MAX_SCHEMA_ID:
            raise ValueError(f"Schema id must be in 1..{MAX_SCHEMA_ID}, got {self.id}")
        if self.version <= 0:
            raise ValueError(f"version must be positive, got {self.version}")
        if not self.subject:
            raise ValueError("Subject name cannot be empty")

    @property
    def field_model(self) -> FieldModel:
        return FieldModel(self.format, self.fields)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation (raw definition base64-encoded)."""
        return {
            "id": self.id,
            "subject": self.subject,
            "version": self.version,
            "content_hash": self.content_hash,
            "format": self.format.value,
            "raw_definition_b64": base64.b64encode(self.raw_definition).decode("ascii"),
            "fields": [f.to_dict() for f in self.fields],
            "registered_at": self.registered_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaRecord:
        return cls(
            id=data["id"],
            subject=data["subject"],
            version=data["version"],
            content_hash=data["content_hash"],
            format=SchemaFormat.from_str(data["format"]),
            raw_definition=base64.b64decode(data["raw_definition_b64"]),
            fields=tuple(FieldDescriptor.from_dict(f) for f in data.get("fields", [])),
            registered_at=data.get("registered_at", 0),
        )


@dataclass(frozen=True)
class SchemaDraft:
    """A validated schema waiting for an ID and a version.

    The store turns a draft into a SchemaRecord inside its atomic append.
    """

    subject: str
    content_hash: str
    format: SchemaFormat
    raw_definition: bytes
    fields: tuple[FieldDescriptor, ...] = ()

    def to_record(self, schema_id: int, version: int, registered_at: int) -> SchemaRecord:
        return SchemaRecord(
            id=schema_id,
            subject=self.subject,
            version=version,
            content_hash=self.content_hash,
            format=self.format,
            raw_definition=self.raw_definition,
            fields=self.fields,
            registered_at=registered_at,
        )


@dataclass(frozen=True)
class SchemaGroup:
    """Organizational namespace over subjects. Carries no compatibility semantics."""

    name: str
    subjects: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "subjects": sorted(self.subjects)}
