"""
SafeBack Server - Main entry point.

This module starts the SafeBack server with all components:
- HTTP API (admin UI and scheduler trigger)
- Backup scheduler loop (optional, for single-node deployments)

Usage:
    python -m recovery.safeback_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The provider registry is frozen before the first request is served
    - The control database schema exists before the HTTP server starts
    - Graceful shutdown stops the scheduler before closing the blob store

How to change safely:
    - Register new providers in register_default_providers(), not here
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import create_http_app, run_http_server
from .config import ServerConfig
from .engine import SnapshotService, create_service
from .providers import register_default_providers
from .registry import freeze_registry, get_registry
from .scheduler import BackupScheduler
from .storage import create_blob_store

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
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)


class Server:
    """SafeBack server orchestrator.

    Attributes:
        config: Server configuration
        service: Snapshot service shared by HTTP and scheduler
        scheduler: Backup scheduler

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.service: SnapshotService | None = None
        self.scheduler: BackupScheduler | None = None
        self._runner: web.AppRunner | None = None
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SafeBack server")
        self.config.log_config()
        self._running = True

        try:
            Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)

            registry = get_registry()
            if not registry.frozen:
                register_default_providers(registry)
                freeze_registry()
            logger.info(
                "Provider registry frozen",
                extra={"providers": [p.name for p in registry]},
            )

            self.service = create_service(self.config, registry, create_blob_store(self.config))
            await self.service.initialize()

            self.scheduler = BackupScheduler(
                self.service.control_store,
                self.service.capture_engine,
                interval_seconds=self.config.scheduler.interval_seconds,
                max_concurrent=self.config.scheduler.max_concurrent,
            )

            app = create_http_app(self.service, self.scheduler, self.config.http)
            self._runner = await run_http_server(app, self.config.http.host, self.config.http.port)

            if self.config.scheduler.enabled:
                self._tasks.append(asyncio.create_task(self.scheduler.start()))

            logger.info("SafeBack server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping SafeBack server")

        if self.scheduler:
            await self.scheduler.stop()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.service:
            await self.service.close()

        self._running = False
        logger.info("SafeBack server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
