"""
SchemaHub registry client for the Python SDK.

This module provides RegistryClient, an async HTTP client for the
registry's JSON API, built on httpx.

Example:
    >>> async with RegistryClient("http://localhost:8081") as registry:
    ...     result = await registry.register("orders-value", avro_text, "AVRO")
    ...     schema = await registry.get_schema(result.id)

Invariants:
    - Every HTTP failure surfaces as a SchemaHubError subclass
    - 5xx, timeouts and transport errors all become RegistryUnavailable
    - Rejections carry the registry's full violation list
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .errors import (
    IncompatibleSchemaError,
    InvalidRequestError,
    NotFoundError,
    RegistryUnavailable,
    SchemaHubError,
    SchemaParseError,
)
from .schema import CompatibilityReport, RegisteredSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registration:
    """Result of registering a schema.

    Attributes:
        id: Schema ID to embed in the wire envelope
        version: Version within the subject
        created: False if the registry already held this definition
    """

    id: int
    version: int
    created: bool = True


def _definition_body(schema: str | bytes, schema_format: str) -> dict[str, Any]:
    body: dict[str, Any] = {"format": schema_format}
    if isinstance(schema, str):
        body["schema"] = schema
        return body
    try:
        body["schema"] = schema.decode("utf-8")
    except UnicodeDecodeError:
        body["schema_b64"] = base64.b64encode(schema).decode("ascii")
    return body


def _segment(value: Any) -> str:
    return quote(str(value), safe="")


class RegistryClient:
    """Client for the SchemaHub registry HTTP API.

    Example:
        >>> client = RegistryClient("http://registry:8081", timeout=2.0)
        >>> versions = await client.versions("orders-value")
        >>> await client.close()
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Registry base URL (e.g. http://localhost:8081)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            response = await self._http.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise RegistryUnavailable(
                f"Registry request timed out: {method} {path}", address=self.base_url
            ) from e
        except httpx.TransportError as e:
            raise RegistryUnavailable(
                f"Registry unreachable: {e}", address=self.base_url
            ) from e

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("error") or f"HTTP {response.status_code} for {method} {path}"
        details = body.get("details") or {}
        status = response.status_code

        if status == 404:
            raise NotFoundError(message, details.get("resource_type"), details.get("resource_id"))
        if status == 409:
            raise IncompatibleSchemaError(
                message,
                subject=details.get("subject"),
                violations=body.get("reasons", []),
            )
        if status == 422:
            raise SchemaParseError(message, details.get("format"))
        if status == 400:
            raise InvalidRequestError(message)
        if status >= 500:
            logger.warning(f"Registry returned {status} for {method} {path}")
            raise RegistryUnavailable(message, address=self.base_url)
        raise SchemaHubError(message, code=body.get("error_code"), details=details)

    async def register(
        self,
        subject: str,
        schema: str | bytes,
        schema_format: str = "AVRO",
    ) -> Registration:
        """Register a schema under a subject.

        Raises:
            IncompatibleSchemaError: If the subject's mode rejects the schema
            SchemaParseError: If the registry cannot parse the definition
        """
        data = await self._request(
            "POST",
            f"/v1/subjects/{_segment(subject)}/versions",
            json=_definition_body(schema, schema_format),
        )
        return Registration(id=data["id"], version=data["version"], created=data.get("created", True))

    async def get_schema(self, schema_id: int) -> RegisteredSchema:
        data = await self._request("GET", f"/v1/schemas/ids/{schema_id}")
        return RegisteredSchema.from_dict(data)

    async def subjects(self) -> list[str]:
        return await self._request("GET", "/v1/subjects")

    async def versions(self, subject: str) -> list[int]:
        return await self._request("GET", f"/v1/subjects/{_segment(subject)}/versions")

    async def get_version(self, subject: str, version: int | str = "latest") -> RegisteredSchema:
        data = await self._request(
            "GET", f"/v1/subjects/{_segment(subject)}/versions/{_segment(version)}"
        )
        return RegisteredSchema.from_dict(data)

    async def set_compatibility(self, subject: str, mode: str) -> str:
        data = await self._request(
            "PUT", f"/v1/config/{_segment(subject)}", json={"compatibility": mode}
        )
        return data["compatibility"]

    async def get_compatibility(self, subject: str) -> str:
        data = await self._request("GET", f"/v1/config/{_segment(subject)}")
        return data["compatibility"]

    async def test_compatibility(
        self,
        subject: str,
        schema: str | bytes,
        schema_format: str = "AVRO",
        version: int | str = "latest",
    ) -> CompatibilityReport:
        data = await self._request(
            "POST",
            f"/v1/compatibility/subjects/{_segment(subject)}/versions/{_segment(version)}",
            json=_definition_body(schema, schema_format),
        )
        return CompatibilityReport.from_dict(data)

    async def deactivate(self, subject: str, version: int) -> None:
        await self._request(
            "POST", f"/v1/subjects/{_segment(subject)}/versions/{version}/deactivate"
        )

    async def reactivate(self, subject: str, version: int) -> None:
        await self._request(
            "POST", f"/v1/subjects/{_segment(subject)}/versions/{version}/reactivate"
        )
