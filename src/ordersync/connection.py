"""WebSocket client connection wrapper.

One ClientConnection per accepted socket. Sends are best-effort: a closed or
slow peer is reported through the return value and never raises into the
broadcast loop.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from ordersync.protocol import ServerMessage, encode_message

logger = logging.getLogger(__name__)


class ClientConnection:
    """Live bidirectional channel to a single participant."""

    def __init__(
        self,
        websocket: ServerConnection,
        connection_id: str | None = None,
        send_timeout_s: float = 2.0,
    ) -> None:
        """Initialize client connection.

        Args:
            websocket: Accepted WebSocket connection
            connection_id: Identifier for logging (generated if omitted)
            send_timeout_s: Upper bound on a single send
        """
        self._websocket = websocket
        self._connection_id = connection_id or f"conn-{uuid.uuid4().hex[:12]}"
        self._send_timeout_s = send_timeout_s
        self._closed = False

        logger.info(
            "Client connection initialized",
            extra={"connection_id": self._connection_id, "remote": websocket.remote_address},
        )

    def __repr__(self) -> str:
        return f"ClientConnection({self._connection_id!r})"

    @property
    def connection_id(self) -> str:
        """Get unique connection identifier."""
        return self._connection_id

    @property
    def is_connected(self) -> bool:
        """Check if the underlying socket is open."""
        return not self._closed and self._websocket.state == State.OPEN

    async def send(self, message: ServerMessage) -> bool:
        """Send one message to the client.

        Args:
            message: Server message to serialize and send

        Returns:
            True if the message was handed to the socket, False if the
            connection is not open, closed mid-send, or timed out
        """
        return await self.send_raw(encode_message(message))

    async def send_raw(self, payload: str) -> bool:
        """Send an already-encoded payload (shared by broadcasts)."""
        if not self.is_connected:
            return False

        try:
            await asyncio.wait_for(self._websocket.send(payload), timeout=self._send_timeout_s)
            return True
        except ConnectionClosed:
            logger.debug(
                "Send dropped, connection closed",
                extra={"connection_id": self._connection_id},
            )
        except TimeoutError:
            logger.warning(
                "Send timed out",
                extra={"connection_id": self._connection_id, "timeout_s": self._send_timeout_s},
            )
        except Exception as e:
            logger.warning(
                "Failed to send message",
                extra={"connection_id": self._connection_id, "error": str(e)},
            )
        return False

    async def messages(self) -> AsyncIterator[str]:
        """Yield inbound text frames until the peer disconnects.

        Binary frames are skipped.
        """
        try:
            async for raw_message in self._websocket:
                if not isinstance(raw_message, str):
                    logger.warning(
                        "Received non-text WebSocket message, skipping",
                        extra={"connection_id": self._connection_id},
                    )
                    continue
                yield raw_message
        except ConnectionClosed:
            logger.info(
                "WebSocket connection closed by client",
                extra={"connection_id": self._connection_id},
            )

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        try:
            await self._websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"connection_id": self._connection_id, "error": str(e)},
            )
