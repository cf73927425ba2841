"""WebSocket transport implementation.

Runs the ``websockets`` asyncio server, wraps each accepted socket in a
ClientConnection, feeds its frames to the MessageHandler one at a time and
guarantees ``disconnect`` runs exactly once when the socket goes away.
"""

import logging
from typing import Any

from websockets.asyncio.server import ServerConnection, serve

from ordersync.config import WebSocketConfig
from ordersync.connection import ClientConnection
from ordersync.handler import MessageHandler
from ordersync.metrics import MetricsCollector, get_metrics_collector

logger = logging.getLogger(__name__)

# RFC 6455 close codes
CLOSE_POLICY_VIOLATION = 1008
CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketTransport:
    """WebSocket transport server."""

    def __init__(
        self,
        handler: MessageHandler,
        config: WebSocketConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            handler: Protocol handler that receives every inbound frame
            config: Bind address, path and connection limits
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self._handler = handler
        self._config = config or WebSocketConfig()
        self._metrics = metrics or get_metrics_collector()
        self._server: Any = None  # websockets.asyncio.server.Server
        self._running = False
        self._connections: set[ClientConnection] = set()

        logger.info(
            "WebSocket transport initialized",
            extra={
                "host": self._config.host,
                "port": self._config.port,
                "path": self._config.path,
                "max_connections": self._config.max_connections,
            },
        )

    @property
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        return self._running

    @property
    def connection_count(self) -> int:
        """Number of currently open client connections."""
        return len(self._connections)

    @property
    def port(self) -> int:
        """Bound port (resolves port 0 to the ephemeral port once started)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._config.port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info(
            "Starting WebSocket server",
            extra={"host": self._config.host, "port": self._config.port},
        )

        try:
            self._server = await serve(
                self._handle_connection,
                self._config.host,
                self._config.port,
                max_size=self._config.max_message_bytes,
            )
            self._running = True
        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._config.host, "port": self._config.port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

        logger.info("WebSocket server started", extra={"port": self.port})

    async def stop(self) -> None:
        """Stop the WebSocket server and close all client connections."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        if self._server:
            self._server.close(close_connections=True)
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle one accepted WebSocket for its whole lifetime.

        Args:
            websocket: WebSocket connection
        """
        path = websocket.request.path if websocket.request is not None else ""
        if path.split("?", 1)[0] != self._config.path:
            logger.warning("Rejecting connection on unknown path", extra={"path": path})
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Unknown path")
            return

        if len(self._connections) >= self._config.max_connections:
            logger.warning(
                "Connection limit reached, rejecting",
                extra={"max_connections": self._config.max_connections},
            )
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Server busy")
            return

        connection = ClientConnection(websocket, send_timeout_s=self._config.send_timeout_s)
        self._connections.add(connection)
        self._metrics.record_connection_opened()

        try:
            async for raw_message in connection.messages():
                await self._handler.handle(connection, raw_message)
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
        finally:
            self._connections.discard(connection)
            self._metrics.record_connection_closed()
            await self._handler.disconnect(connection)
            logger.info(
                "WebSocket connection closed",
                extra={"connection_id": connection.connection_id},
            )
