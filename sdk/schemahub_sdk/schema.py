"""
Schema types for the SchemaHub SDK.

These are client-side views of registry responses:
- FieldInfo: One analyzed field of a schema
- RegisteredSchema: A schema version as served by the registry
- CompatibilityReport: Outcome of a compatibility dry run

Invariants:
    - Instances are immutable and built only from registry responses
    - raw_definition holds the exact bytes that were registered
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldInfo:
    """One field of a registered schema.

    Attributes:
        name: Field name
        type: Normalized type tag
        optional: Whether the field may be absent or null
        has_default: Whether the definition declares a default
        default: The declared default value
    """

    name: str
    type: str
    optional: bool = False
    has_default: bool = False
    default: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldInfo:
        return cls(
            name=data["name"],
            type=data["type"],
            optional=data.get("optional", False),
            has_default="default" in data,
            default=data.get("default"),
        )


@dataclass(frozen=True)
class RegisteredSchema:
    """A schema version as returned by the registry.

    Attributes:
        id: Globally unique schema ID
        subject: Subject the schema belongs to
        version: Version within the subject
        format: Schema format tag (AVRO, JSON, PROTOBUF, OPAQUE)
        raw_definition: Definition bytes exactly as registered
        fields: Analyzed fields (empty for unexamined formats)
        content_hash: sha256 hex digest of the definition
        registered_at: Registration timestamp (Unix ms)
    """

    id: int
    subject: str
    version: int
    format: str
    raw_definition: bytes
    fields: tuple[FieldInfo, ...] = ()
    content_hash: str = ""
    registered_at: int = 0

    @property
    def schema(self) -> str:
        """The definition decoded as UTF-8 text."""
        return self.raw_definition.decode("utf-8")

    def get_field(self, name: str) -> FieldInfo | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegisteredSchema:
        if data.get("schema_b64") is not None:
            raw = base64.b64decode(data["schema_b64"])
        else:
            raw = (data.get("schema") or "").encode("utf-8")
        return cls(
            id=data["id"],
            subject=data["subject"],
            version=data["version"],
            format=data.get("format", "OPAQUE"),
            raw_definition=raw,
            fields=tuple(FieldInfo.from_dict(f) for f in data.get("fields", [])),
            content_hash=data.get("content_hash", ""),
            registered_at=data.get("registered_at", 0),
        )


@dataclass(frozen=True)
class CompatibilityReport:
    """Outcome of a compatibility dry run.

    Attributes:
        is_compatible: Whether the candidate would be accepted
        mode: Compatibility mode the check ran under
        checked_versions: Versions the candidate was compared with
        reasons: One dict per violation
    """

    is_compatible: bool
    mode: str
    checked_versions: tuple[int, ...] = ()
    reasons: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompatibilityReport:
        return cls(
            is_compatible=data["is_compatible"],
            mode=data.get("mode", ""),
            checked_versions=tuple(data.get("checked_versions", [])),
            reasons=tuple(data.get("reasons", [])),
        )
