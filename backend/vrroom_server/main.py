"""
VRroom Server - Main entry point.

This module starts the VRroom backend with both HTTP surfaces:
- Flat REST surface (aiohttp) for game clients
- /v1 resource surface (FastAPI under uvicorn) for tools and web clients

Both surfaces share one Services instance: one SQLite store, one blob
store, one token issuer and one visibility policy.

Usage:
    vrroom-server
    python -m backend.vrroom_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The blob store is connected before either surface accepts requests
    - Graceful shutdown stops both surfaces before closing the store

How to change safely:
    - Start new listeners as tasks in Server.start() and stop them in stop()
    - Test the shutdown sequence with both surfaces running
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
import uvicorn
from aiohttp import web

from ..vrroom_gateway.app import create_app as create_gateway_app
from ..vrroom_gateway.config import GatewaySettings
from .api import create_http_app
from .config import ServerConfig
from .services import Services

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


class Server:
    """VRroom Server orchestrator.

    Manages the lifecycle of all server components:
    - Store and blob store (through Services)
    - Flat REST site
    - /v1 gateway uvicorn server

    Attributes:
        config: Server configuration
        gateway_settings: Bind address and CORS for the /v1 surface
        services: Shared engine graph

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        gateway_settings: GatewaySettings | None = None,
    ) -> None:
        self.config = config or ServerConfig.from_env()
        self.gateway_settings = gateway_settings or GatewaySettings()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.services: Services | None = None
        self._http_runner: web.AppRunner | None = None
        self._gateway: uvicorn.Server | None = None

        # Background tasks
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting VRroom server")
        self.config.log_config()

        try:
            db_path = self.config.storage.database_path
            if db_path != ":memory:":
                Path(db_path).resolve().parent.mkdir(parents=True, exist_ok=True)

            self.services = Services.build(self.config)
            await self.services.start()
            logger.info("Blob store connected", extra={"backend": self.config.blob_backend.value})

            # Flat surface
            http = self.config.http
            self._http_runner = web.AppRunner(create_http_app(self.services, http))
            await self._http_runner.setup()
            site = web.TCPSite(self._http_runner, http.host, http.port)
            await site.start()
            logger.info(f"HTTP server running on http://{http.host}:{http.port}")

            # /v1 surface
            gateway_app = create_gateway_app(self.services, self.gateway_settings)
            self._gateway = uvicorn.Server(
                uvicorn.Config(
                    gateway_app,
                    host=self.gateway_settings.host,
                    port=self.gateway_settings.port,
                    log_config=None,
                )
            )
            self._tasks.append(asyncio.create_task(self._gateway.serve()))
            logger.info(
                f"Gateway running on http://{self.gateway_settings.host}:{self.gateway_settings.port}"
            )

            self._running = True
            logger.info("VRroom server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping VRroom server")

        if self._gateway:
            self._gateway.should_exit = True

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        if self._http_runner:
            await self._http_runner.cleanup()

        if self.services:
            await self.services.close()

        self._running = False
        logger.info("VRroom server stopped")

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
