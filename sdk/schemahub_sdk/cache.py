"""
Client-side schema cache for SchemaHub.

Schema records are immutable, so a resolved ID never needs invalidation.
The cache fronts a fetch coroutine (usually RegistryClient.get_schema) and
bounds every miss with a timeout.

Invariants:
    - Entries never expire and are never evicted
    - A miss waits at most `timeout` seconds, then raises RegistryUnavailable
    - NotFoundError from the fetch propagates unchanged and is not cached
    - Concurrent misses for one ID may fetch twice; the second write is a no-op
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Dict, Optional

import httpx

from .errors import NotFoundError, RegistryUnavailable
from .schema import RegisteredSchema

logger = logging.getLogger(__name__)

SchemaFetcher = Callable[[int], Awaitable[RegisteredSchema]]


class SchemaCache:
    """In-process ID -> schema cache with a bounded fetch on miss.

    Example:
        >>> cache = SchemaCache(client.get_schema, timeout=2.0)
        >>> schema = await cache.resolve(42)
    """

    def __init__(self, fetch: SchemaFetcher, timeout: float = 5.0) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._fetch = fetch
        self.timeout = timeout
        self._schemas: Dict[int, RegisteredSchema] = {}

    async def resolve(self, schema_id: int) -> RegisteredSchema:
        """Return the schema for an ID, fetching it on a miss.

        Raises:
            NotFoundError: If the registry does not know the ID
            RegistryUnavailable: If the fetch times out or the transport fails
        """
        schema = self._schemas.get(schema_id)
        if schema is not None:
            return schema

        try:
            schema = await asyncio.wait_for(self._fetch(schema_id), timeout=self.timeout)
        except NotFoundError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"Schema {schema_id} lookup timed out after {self.timeout}s")
            raise RegistryUnavailable(
                f"Timed out after {self.timeout}s resolving schema id {schema_id}"
            ) from e
        except (httpx.TransportError, OSError) as e:
            raise RegistryUnavailable(f"Failed to resolve schema id {schema_id}: {e}") from e

        self._schemas.setdefault(schema_id, schema)
        return self._schemas[schema_id]

    def get_cached(self, schema_id: int) -> Optional[RegisteredSchema]:
        return self._schemas.get(schema_id)

    def prime(self, schema_id: int, schema: RegisteredSchema) -> None:
        """Seed the cache, e.g. with a schema the caller just registered."""
        self._schemas.setdefault(schema_id, schema)

    def __contains__(self, schema_id: object) -> bool:
        return schema_id in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)
