"""
Envelope serializer and deserializer for SchemaHub.

The serializer registers its schema once and frames every payload with the
resulting ID; the deserializer reads the ID back and resolves the schema
through a SchemaCache. Payload encoding itself is the caller's concern.

Example:
    >>> serializer = EnvelopeSerializer(client, "orders-value", avro_text, "AVRO")
    >>> data = await serializer.serialize(payload_bytes)
    >>> deserializer = EnvelopeDeserializer(SchemaCache(client.get_schema))
    >>> schema, payload = await deserializer.deserialize(data)
"""

from __future__ import annotations

import asyncio
import logging

from . import wire
from .cache import SchemaCache
from .client import RegistryClient
from .schema import RegisteredSchema

logger = logging.getLogger(__name__)


class EnvelopeSerializer:
    """Frames payloads with the schema ID of one registered schema."""

    def __init__(
        self,
        client: RegistryClient,
        subject: str,
        schema: str | bytes,
        schema_format: str = "AVRO",
    ) -> None:
        self._client = client
        self.subject = subject
        self._schema = schema
        self.schema_format = schema_format
        self._schema_id: int | None = None
        self._lock = asyncio.Lock()

    @property
    def schema_id(self) -> int | None:
        """ID of the registered schema, or None before the first serialize()."""
        return self._schema_id

    async def _ensure_registered(self) -> int:
        if self._schema_id is None:
            async with self._lock:
                if self._schema_id is None:
                    result = await self._client.register(
                        self.subject, self._schema, self.schema_format
                    )
                    logger.debug(
                        f"Serializer bound to {self.subject} v{result.version} (id {result.id})"
                    )
                    self._schema_id = result.id
        return self._schema_id

    async def serialize(self, payload: bytes) -> bytes:
        """Frame payload bytes, registering the schema on first use.

        Raises:
            IncompatibleSchemaError: If the first registration is rejected
            RegistryUnavailable: If the registry cannot be reached
        """
        schema_id = await self._ensure_registered()
        return wire.encode(schema_id, payload)


class EnvelopeDeserializer:
    """Unframes payloads and resolves their writer schema."""

    def __init__(self, cache: SchemaCache) -> None:
        self.cache = cache

    async def deserialize(self, data: bytes) -> tuple[RegisteredSchema, bytes]:
        """Split an envelope and resolve its schema.

        Raises:
            MalformedEnvelope: If data is not a valid envelope
            NotFoundError: If the schema ID is unknown to the registry
            RegistryUnavailable: If resolution times out
        """
        schema_id, payload = wire.decode(data)
        schema = await self.cache.resolve(schema_id)
        return schema, payload
