"""
Registry service implementation for SchemaHub.

The servicer is the transport-neutral layer between the HTTP handlers and
the SubjectManager. It validates and decodes request payloads and returns
plain dictionaries ready to be serialized as JSON.

Invariants:
    - Every method returns JSON-serializable dicts or lists
    - Registry errors propagate unchanged; the transport maps them to statuses
    - Raw definitions travel as UTF-8 text ("schema") or base64 ("schema_b64")

How to change safely:
    - Add response keys, never rename existing ones
    - Keep decoding rules in _decode_definition() only
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Any, Dict, List, Optional

from .._version import __version__
from ..errors import InvalidRequestError
from ..manager import SubjectManager
from ..schema.types import SchemaFormat, SchemaRecord

logger = logging.getLogger(__name__)


def _decode_definition(body: Dict[str, Any]) -> bytes:
    """Extract the raw definition bytes from a request body."""
    if "schema_b64" in body:
        try:
            return base64.b64decode(body["schema_b64"], validate=True)
        except (binascii.Error, TypeError) as e:
            raise InvalidRequestError(f"schema_b64 is not valid base64: {e}")
    schema = body.get("schema")
    if schema is None:
        raise InvalidRequestError("Request body requires 'schema' or 'schema_b64'")
    if not isinstance(schema, str):
        raise InvalidRequestError("'schema' must be a string")
    return schema.encode("utf-8")


def _format_of(body: Dict[str, Any]) -> SchemaFormat:
    value = body.get("format", SchemaFormat.AVRO.value)
    if not isinstance(value, str):
        raise InvalidRequestError("'format' must be a string")
    return SchemaFormat.from_str(value)


def record_to_response(record: SchemaRecord) -> Dict[str, Any]:
    """Render a SchemaRecord for API responses."""
    try:
        schema_text: Optional[str] = record.raw_definition.decode("utf-8")
    except UnicodeDecodeError:
        schema_text = None
    return {
        "id": record.id,
        "subject": record.subject,
        "version": record.version,
        "format": record.format.value,
        "schema": schema_text,
        "schema_b64": base64.b64encode(record.raw_definition).decode("ascii"),
        "content_hash": record.content_hash,
        "fields": [f.to_dict() for f in record.fields],
        "registered_at": record.registered_at,
    }


class RegistryServicer:
    """Service implementation backing the HTTP API.

    Attributes:
        manager: SubjectManager performing all registry operations
    """

    def __init__(self, manager: SubjectManager) -> None:
        self.manager = manager
        self._started_at = time.time()

    async def register(self, subject: str, body: Dict[str, Any]) -> Dict[str, Any]:
        raw = _decode_definition(body)
        schema_format = _format_of(body)
        registered = await self.manager.register(subject, raw, schema_format)
        return {
            "id": registered.id,
            "version": registered.version,
            "created": registered.created,
        }

    async def get_schema(self, schema_id: int) -> Dict[str, Any]:
        return record_to_response(await self.manager.get_schema(schema_id))

    async def list_versions(self, subject: str, include_inactive: bool = False) -> List[int]:
        return await self.manager.versions(subject, include_inactive=include_inactive)

    async def get_version(self, subject: str, version: str) -> Dict[str, Any]:
        record = await self.manager.get_version(subject, version)
        response = record_to_response(record)
        response["active"] = await self.manager.store.is_active(subject, record.version)
        return response

    async def list_subjects(self) -> List[str]:
        return await self.manager.subjects()

    async def set_compatibility(self, subject: str, body: Dict[str, Any]) -> Dict[str, Any]:
        mode = body.get("compatibility")
        if not mode:
            raise InvalidRequestError("Request body requires 'compatibility'")
        if not isinstance(mode, str):
            raise InvalidRequestError("'compatibility' must be a string")
        applied = await self.manager.set_compatibility(subject, mode)
        return {"subject": subject, "compatibility": applied.value}

    async def get_compatibility(self, subject: str) -> Dict[str, Any]:
        mode = await self.manager.get_compatibility(subject)
        return {"subject": subject, "compatibility": mode.value}

    async def test_compatibility(
        self,
        subject: str,
        version: str,
        body: Dict[str, Any],
    ) -> Dict[str, Any]:
        raw = _decode_definition(body)
        schema_format = _format_of(body)
        result = await self.manager.test_compatibility(subject, raw, schema_format, version)
        return result.to_dict()

    async def deactivate(self, subject: str, version: str) -> Dict[str, Any]:
        await self.manager.deactivate(subject, version)
        return {"subject": subject, "version": int(version), "active": False}

    async def reactivate(self, subject: str, version: str) -> Dict[str, Any]:
        await self.manager.reactivate(subject, version)
        return {"subject": subject, "version": int(version), "active": True}

    async def purge(self, subject: str, version: str) -> Dict[str, Any]:
        await self.manager.purge(subject, version)
        return {"subject": subject, "version": int(version), "purged": True}

    async def list_groups(self) -> List[str]:
        return await self.manager.groups()

    async def get_group(self, group: str) -> Dict[str, Any]:
        return (await self.manager.get_group(group)).to_dict()

    async def add_to_group(self, group: str, subject: str) -> Dict[str, Any]:
        return (await self.manager.add_to_group(group, subject)).to_dict()

    async def remove_from_group(self, group: str, subject: str) -> Dict[str, Any]:
        return (await self.manager.remove_from_group(group, subject)).to_dict()

    async def health(self) -> Dict[str, Any]:
        """Health check including registration counters."""
        try:
            subjects = await self.manager.subjects()
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return {"healthy": False, "version": __version__, "error": str(e)}
        return {
            "healthy": True,
            "version": __version__,
            "uptime_seconds": int(time.time() - self._started_at),
            "subjects": len(subjects),
            "formats": [f.value for f in self.manager.analyzers.formats()],
            "default_compatibility": self.manager.default_mode.value,
            "stats": self.manager.stats(),
        }
