"""
SchemaHub Test Suite.

This package contains:
- unit/: Unit tests (in-memory and temporary SQLite stores, mocked transports)
- integration/: Integration tests (aiohttp server with the SDK against it)
"""
