"""
SchemaHub Server - Main entry point.

This module starts the registry server with all components:
- Schema store and ID allocator (memory or SQLite backend)
- SubjectManager (registration, policy, lifecycle)
- HTTP API (aiohttp)

Usage:
    python -m registry.schemahub_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is opened before the HTTP listener accepts requests
    - Graceful shutdown stops the listener before closing the store

How to change safely:
    - Add new components to start() and the reverse of their order to stop()
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import RegistryServicer, create_http_app
from .config import ServerConfig
from .manager import SubjectManager
from .schema import AnalyzerTable
from .store import IdAllocator, SchemaStore, create_schema_store

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """SchemaHub server orchestrator.

    Attributes:
        config: Server configuration
        store: Schema store instance
        allocator: Schema ID allocator
        manager: SubjectManager instance
        servicer: HTTP service implementation

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: SchemaStore | None = None
        self.allocator: IdAllocator | None = None
        self.manager: SubjectManager | None = None
        self.servicer: RegistryServicer | None = None
        self._runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the store, the manager and the HTTP listener."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SchemaHub server")
        self.config.log_config()

        try:
            self.store, self.allocator = create_schema_store(self.config)
            self.manager = SubjectManager(
                store=self.store,
                allocator=self.allocator,
                analyzers=AnalyzerTable.default(),
                default_mode=self.config.registry.default_compatibility,
            )
            self.servicer = RegistryServicer(self.manager)

            app = create_http_app(self.servicer, self.config.http)
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.http.host, self.config.http.port)
            await site.start()

            self._running = True
            logger.info(
                f"SchemaHub server listening on http://{self.config.http.host}:{self.config.http.port}"
            )
        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._teardown()
            raise

    async def run(self) -> None:
        """Start the server and block until shutdown is requested."""
        await self.start()
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping SchemaHub server")
        await self._teardown()
        self._running = False
        logger.info("SchemaHub server stopped")

    async def _teardown(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.store:
            await self.store.close()
            self.store = None

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
