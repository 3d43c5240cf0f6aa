"""
SchemaHub Python SDK - Client library for the SchemaHub schema registry.

This SDK provides:
- RegistryClient for the registry's HTTP API
- The 5-byte wire envelope codec (marker byte + big-endian schema ID)
- SchemaCache, an ID -> schema cache with bounded lookups
- EnvelopeSerializer / EnvelopeDeserializer built on the above

Example:
    >>> from schemahub_sdk import EnvelopeSerializer, RegistryClient
    >>>
    >>> async with RegistryClient("http://localhost:8081") as registry:
    ...     serializer = EnvelopeSerializer(registry, "orders-value", avro_text)
    ...     data = await serializer.serialize(payload_bytes)

Invariants:
    - Schema IDs in envelopes fit an unsigned 32-bit integer
    - Cached schemas never expire (registered schemas are immutable)

Version: 0.3.0
"""

__version__ = "0.3.0"

from .cache import SchemaCache
from .client import Registration, RegistryClient
from .errors import (
    IncompatibleSchemaError,
    InvalidRequestError,
    MalformedEnvelope,
    NotFoundError,
    RegistryUnavailable,
    SchemaHubError,
    SchemaParseError,
)
from .schema import CompatibilityReport, FieldInfo, RegisteredSchema
from .serde import EnvelopeDeserializer, EnvelopeSerializer
from .wire import HEADER_SIZE, MAGIC_BYTE, decode, encode, peek_schema_id

__all__ = [
    # Version
    "__version__",
    # Wire codec
    "HEADER_SIZE",
    "MAGIC_BYTE",
    "encode",
    "decode",
    "peek_schema_id",
    # Schema types
    "CompatibilityReport",
    "FieldInfo",
    "RegisteredSchema",
    # Client
    "Registration",
    "RegistryClient",
    "SchemaCache",
    "EnvelopeSerializer",
    "EnvelopeDeserializer",
    # Errors
    "SchemaHubError",
    "RegistryUnavailable",
    "NotFoundError",
    "IncompatibleSchemaError",
    "SchemaParseError",
    "InvalidRequestError",
    "MalformedEnvelope",
]
