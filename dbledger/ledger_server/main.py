"""
Ledger Server - Main entry point.

This module starts the ledger server with all components:
- SQLite ledger store
- Commit coordinator and entity registry
- gRPC server (primary API)
- HTTP server (optional, HTTP_ENABLED=true)

Usage:
    python -m dbledger.ledger_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is open before any server accepts requests
    - Graceful shutdown stops servers before closing the store
    - The store handle is passed explicitly to every component

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .api import GrpcServer, HttpServer, LedgerServicer
from .config import DatabaseType, ServerConfig
from .ledger import CommitCoordinator, CommitPolicy, EntityRegistry, LedgerStore

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
    logging.getLogger("grpc").setLevel(logging.WARNING)


def build_store(config: ServerConfig) -> LedgerStore:
    """Create the ledger store described by the storage configuration."""
    storage = config.storage
    if storage.database_type == DatabaseType.MEMORY:
        return LedgerStore(in_memory=True, busy_timeout_ms=storage.busy_timeout_ms)

    if storage.clear_on_start:
        LedgerStore.clear(storage.data_dir)

    return LedgerStore(
        data_dir=storage.data_dir,
        db_name=storage.database_name,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
    )


def build_policy(config: ServerConfig) -> CommitPolicy:
    ledger = config.ledger
    return CommitPolicy(
        default_poster=ledger.default_poster,
        default_decimals=ledger.default_decimals,
        default_tag=ledger.default_tag,
        enforce_balance=ledger.enforce_balance,
        strict_delete=ledger.strict_delete,
    )


class Server:
    """Ledger server orchestrator.

    Manages the lifecycle of all server components:
    - Ledger store
    - gRPC server
    - Optional HTTP server

    Attributes:
        config: Server configuration
        store: Ledger store
        coordinator: Commit coordinator
        servicer: Service implementation shared by both servers

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
        self._started_event = asyncio.Event()

        # Components (initialized in start())
        self.store: LedgerStore | None = None
        self.coordinator: CommitCoordinator | None = None
        self.servicer: LedgerServicer | None = None
        self.grpc_server: GrpcServer | None = None
        self.http_server: HttpServer | None = None

    async def start(self) -> None:
        """Start the server and all components."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting ledger server")
        self.config.log_config()

        try:
            self.store = build_store(self.config)
            self.store.open()

            self.coordinator = CommitCoordinator(
                store=self.store,
                registry=EntityRegistry(self.store),
                policy=build_policy(self.config),
            )
            self.servicer = LedgerServicer(self.coordinator)

            host, port = self.config.grpc.bind_address.rsplit(":", 1)
            self.grpc_server = GrpcServer(
                servicer=self.servicer,
                host=host,
                port=int(port),
                max_workers=self.config.grpc.max_workers,
                max_message_size=self.config.grpc.max_message_size,
            )
            await self.grpc_server.start()

            if self.config.http.enabled:
                self.http_server = HttpServer(self.servicer, self.config.http)
                await self.http_server.start()

            self._running = True
            logger.info("Ledger server started successfully")
            self._started_event.set()

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

        logger.info("Stopping ledger server")

        if self.http_server:
            await self.http_server.stop()

        if self.grpc_server:
            await self.grpc_server.stop()

        if self.store:
            self.store.close()

        self._running = False
        logger.info("Ledger server stopped")

    async def wait_started(self) -> None:
        """Block until start() has brought every component up."""
        await self._started_event.wait()

    @property
    def is_running(self) -> bool:
        return self._running

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

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

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
