"""ordersync server with WebSocket transport and HTTP API.

Main server implementation that:
1. Builds the session store, connection registry and broadcast engine
2. Starts the WebSocket transport for the session protocol
3. Starts the HTTP API (session create/lookup, health, metrics)
4. Runs the expiry sweeper in the background
"""

import argparse
import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path

from aiohttp.web import AppRunner, TCPSite
from dotenv import load_dotenv

from ordersync.broadcast import Broadcaster
from ordersync.config import OrderSyncConfig
from ordersync.handler import MessageHandler
from ordersync.http_api import create_http_app
from ordersync.metrics import MetricsCollector, get_metrics_collector
from ordersync.registry import ConnectionRegistry
from ordersync.store import SessionStore
from ordersync.sweeper import ExpirySweeper
from ordersync.transport import WebSocketTransport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class OrderSyncServer:
    """Wires every component together and owns their lifecycle.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        config: OrderSyncConfig,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize server components (nothing is bound until start()).

        Args:
            config: Server configuration
            clock: Time source for session ages
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self.config = config
        self.metrics = metrics or get_metrics_collector()

        self.store = SessionStore(
            session_config=config.session,
            limits=config.limits,
            clock=clock,
            metrics=self.metrics,
        )
        self.registry = ConnectionRegistry()
        self.broadcaster = Broadcaster(self.registry, metrics=self.metrics)
        self.sweeper = ExpirySweeper(self.store, self.registry, metrics=self.metrics)
        self.handler = MessageHandler(
            self.store,
            self.registry,
            self.broadcaster,
            sweeper=self.sweeper,
            limits=config.limits,
            metrics=self.metrics,
        )
        self.transport = WebSocketTransport(
            self.handler, config.transport.websocket, metrics=self.metrics
        )

        self._runner: AppRunner | None = None
        self._stopped = asyncio.Event()

    @property
    def http_port(self) -> int | None:
        """Bound HTTP port, or None if the HTTP API is not running."""
        if self._runner is None:
            return None
        addresses = self._runner.addresses
        if addresses:
            return int(addresses[0][1])
        return self.config.http.port

    async def start(self) -> None:
        """Start the WebSocket transport, HTTP API and sweeper.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        await self.transport.start()

        http_config = self.config.http
        if http_config.enabled:
            app = create_http_app(
                self.store,
                self.sweeper,
                self.registry,
                metrics=self.metrics,
                cors_allow_origin=http_config.cors_allow_origin,
            )
            self._runner = AppRunner(app)
            await self._runner.setup()
            site = TCPSite(self._runner, http_config.host, http_config.port)
            await site.start()
            logger.info("HTTP API started", extra={"port": self.http_port})

        self.sweeper.start()
        self._stopped.clear()

        logger.info(
            "ordersync server ready",
            extra={
                "ws_port": self.transport.port,
                "session_timeout_s": self.config.session.timeout_seconds,
                "sweep_interval_s": self.config.session.sweep_interval_seconds,
            },
        )

    async def stop(self) -> None:
        """Stop the sweeper, HTTP API and transport."""
        logger.info("Shutting down ordersync server")

        await self.sweeper.stop()

        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP API stopped")

        try:
            await asyncio.wait_for(
                self.transport.stop(), timeout=self.config.graceful_shutdown_timeout_s
            )
        except TimeoutError:
            logger.warning(
                "Timed out closing client connections",
                extra={"timeout_s": self.config.graceful_shutdown_timeout_s},
            )
        await self.broadcaster.wait_closed()

        self._stopped.set()
        logger.info("ordersync server stopped")

    async def run_forever(self) -> None:
        """Start the server and block until stop() is called or the task is cancelled."""
        await self.start()
        try:
            await self._stopped.wait()
        except asyncio.CancelledError:
            logger.info("Server loop cancelled")
        finally:
            if not self._stopped.is_set():
                await self.stop()


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the server.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


async def start_server(config_path: Path | None = None) -> None:
    """Load configuration and run the server until interrupted.

    Args:
        config_path: Optional path to YAML config file
    """
    config = OrderSyncConfig.from_yaml_with_defaults(config_path)
    setup_logging(config.log_level)
    logger.info(
        "Loaded configuration",
        extra={"config_path": str(config_path) if config_path else None},
    )

    server = OrderSyncServer(config)
    await server.run_forever()


def main() -> None:
    """Entry point for the ordersync server."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="ordersync server")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs") / "ordersync.yaml",
        help="Path to server config YAML file (default: configs/ordersync.yaml)",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("ordersync server interrupted")


if __name__ == "__main__":
    main()
