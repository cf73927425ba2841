"""Broadcast engine.

Pushes the full session state to connections. Deliveries to different
connections run concurrently and independently; a connection that is not
open, closes mid-send or exceeds the send timeout is dropped from the
session without affecting the others.
"""

import asyncio
import logging
import time

from ordersync.connection import ClientConnection
from ordersync.metrics import MetricsCollector, get_metrics_collector
from ordersync.models import Session
from ordersync.protocol import OrdersMessage, ServerMessage, encode_message
from ordersync.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def snapshot_message(session: Session) -> OrdersMessage:
    """Build the ``orders`` message for the session's current state."""
    return OrdersMessage.model_validate(session.snapshot())


class Broadcaster:
    """Fans messages out to every connection registered in a session.

    Callers hold the session lock across a broadcast, so a backpressured peer
    delays the next mutation in its session by at most the connection send
    timeout (``transport.websocket.send_timeout_s``). The peer is then dropped
    and every later broadcast proceeds without it.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize broadcaster.

        Args:
            registry: Connection registry used to drop failed connections
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self._registry = registry
        self._metrics = metrics or get_metrics_collector()
        self._close_tasks: set[asyncio.Task[None]] = set()

    def _close_in_background(self, connection: ClientConnection) -> None:
        task = asyncio.create_task(connection.close(code=1011, reason="Delivery failed"))
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

    async def wait_closed(self) -> None:
        """Wait for pending background closes (used on shutdown)."""
        if self._close_tasks:
            await asyncio.gather(*self._close_tasks, return_exceptions=True)

    async def send_snapshot(self, connection: ClientConnection, session: Session) -> bool:
        """Send the current state to a single connection (used on join)."""
        return await connection.send(snapshot_message(session))

    async def broadcast_state(self, session: Session) -> int:
        """Send the current state to every connection in the session.

        Returns:
            Number of connections the snapshot was delivered to
        """
        return await self.broadcast(session, snapshot_message(session))

    async def broadcast(self, session: Session, message: ServerMessage) -> int:
        """Send one message to every connection in the session.

        The payload is encoded once. Connections that are not open are
        skipped and, like those whose send fails, removed from the session.

        Returns:
            Number of connections the message was delivered to
        """
        start = time.monotonic()
        payload = encode_message(message)
        members = list(session.connections)

        results = await asyncio.gather(
            *(connection.send_raw(payload) for connection in members),
            return_exceptions=True,
        )

        delivered = 0
        failed: list[ClientConnection] = []
        for connection, result in zip(members, results, strict=True):
            if result is True:
                delivered += 1
            else:
                if isinstance(result, BaseException):
                    logger.warning(
                        "Unexpected error delivering to connection",
                        extra={"connection_id": connection.connection_id, "error": str(result)},
                    )
                failed.append(connection)

        for connection in failed:
            # Only drop connections still attached to this session
            if self._registry.session_for(connection) is session:
                self._registry.unbind(connection)
            else:
                session.connections.discard(connection)
            if connection.is_connected:
                # Slow peer: close it without holding up the caller
                self._close_in_background(connection)

        self._metrics.record_broadcast(delivered, len(failed), time.monotonic() - start)

        logger.debug(
            "Broadcast complete",
            extra={
                "session_code": session.code,
                "type": message.type,
                "delivered": delivered,
                "dropped": len(failed),
            },
        )
        return delivered
