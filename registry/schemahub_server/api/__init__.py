"""
API module for the SchemaHub server.

This module provides the external interface:
- RegistryServicer: transport-neutral service layer over the SubjectManager
- HTTP server: aiohttp JSON API

Invariants:
    - Handlers never touch the store directly
    - Every registry error maps to one HTTP status

How to change safely:
    - Add new routes, don't modify existing ones
    - Keep the SDK client in sync with route and status changes
"""

from .http_server import create_http_app
from .servicer import RegistryServicer

__all__ = [
    "RegistryServicer",
    "create_http_app",
]
