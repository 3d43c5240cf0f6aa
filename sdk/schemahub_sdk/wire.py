"""
Wire envelope codec for SchemaHub.

Every serialized payload is framed as:

    +--------+----------------------+-----------------+
    | 0x00   | schema ID (u32, BE)  | payload ...     |
    +--------+----------------------+-----------------+
      1 byte        4 bytes            opaque bytes

Invariants:
    - The header is exactly 5 bytes
    - The payload is passed through unchanged
    - decode(encode(i, p)) == (i, p) for every valid i and p
"""

from __future__ import annotations

import struct

from .errors import MalformedEnvelope

MAGIC_BYTE = 0x00
MAX_SCHEMA_ID = 2**32 - 1

_HEADER = struct.Struct(">BI")
HEADER_SIZE = _HEADER.size


def encode(schema_id: int, payload: bytes) -> bytes:
    """Frame a payload with its schema ID.

    Raises:
        ValueError: If schema_id does not fit an unsigned 32-bit integer
    """
    if not 0 <= schema_id <= MAX_SCHEMA_ID:
        raise ValueError(f"Schema id {schema_id} does not fit in 32 bits")
    return _HEADER.pack(MAGIC_BYTE, schema_id) + bytes(payload)


def _unpack_header(data: bytes) -> int:
    if len(data) < HEADER_SIZE:
        raise MalformedEnvelope(
            f"Envelope too short: {len(data)} byte(s), need at least {HEADER_SIZE}",
            length=len(data),
        )
    marker, schema_id = _HEADER.unpack_from(data)
    if marker != MAGIC_BYTE:
        raise MalformedEnvelope(f"Unknown envelope marker 0x{marker:02x}", length=len(data))
    return schema_id


def decode(data: bytes) -> tuple[int, bytes]:
    """Split an envelope into (schema_id, payload).

    Raises:
        MalformedEnvelope: If the header is missing or the marker is wrong
    """
    schema_id = _unpack_header(data)
    return schema_id, bytes(data[HEADER_SIZE:])


def peek_schema_id(data: bytes) -> int:
    """Read the schema ID without copying the payload."""
    return _unpack_header(data)
