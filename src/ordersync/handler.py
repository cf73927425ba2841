"""Message protocol handler.

Validates and applies one inbound message against one session, then decides
what to send: a broadcast of the new state to every member, or an error to
the sender only. Validation always completes before any mutation so each
message is all-or-nothing.
"""

import logging
from collections.abc import Awaitable, Callable

from ordersync.broadcast import Broadcaster
from ordersync.config import LimitsConfig
from ordersync.connection import ClientConnection
from ordersync.metrics import MetricsCollector, get_metrics_collector
from ordersync.models import OrderItem, Session
from ordersync.protocol import (
    AddOrderMessage,
    ClientMessage,
    ErrorMessage,
    JoinMessage,
    ProtocolError,
    RemoveOrderMessage,
    SetTaxMessage,
    ToggleOrderStatusMessage,
    parse_client_message,
)
from ordersync.registry import ConnectionRegistry
from ordersync.store import SessionStore, normalize_code
from ordersync.sweeper import ExpirySweeper
from ordersync.validation import OrderValidationError, validate_order, validate_tax

logger = logging.getLogger(__name__)


class MessageHandler:
    """Dispatches client messages to session operations.

    Thread-safety: Not thread-safe. All calls must come from the event loop
    that owns the store; per-session ordering is enforced with ``Session.lock``.
    """

    def __init__(
        self,
        store: SessionStore,
        registry: ConnectionRegistry,
        broadcaster: Broadcaster,
        sweeper: ExpirySweeper | None = None,
        limits: LimitsConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize message handler.

        Args:
            store: Session store
            registry: Connection registry
            broadcaster: Broadcast engine
            sweeper: Expiry sweeper used to retire stale sessions on join
            limits: Item/tax bounds (defaults to the store's limits)
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster
        self.limits = limits or store.limits
        self._metrics = metrics or get_metrics_collector()
        self.sweeper = sweeper or ExpirySweeper(store, registry, metrics=self._metrics)

        self._operations: dict[
            type, Callable[[ClientConnection, Session, ClientMessage], Awaitable[None]]
        ] = {
            AddOrderMessage: self._add_order,  # type: ignore[dict-item]
            RemoveOrderMessage: self._remove_order,  # type: ignore[dict-item]
            ToggleOrderStatusMessage: self._toggle_order_status,  # type: ignore[dict-item]
            SetTaxMessage: self._set_tax,  # type: ignore[dict-item]
        }

    async def handle(self, connection: ClientConnection, raw: str | bytes) -> None:
        """Handle one raw inbound frame from a connection.

        Never raises: protocol and validation failures are reported to the
        sender, unexpected failures are logged and reported as INTERNAL_ERROR.
        """
        try:
            message = parse_client_message(raw)
        except ProtocolError as e:
            self._metrics.record_protocol_error()
            logger.info(
                "Rejected malformed message",
                extra={"connection_id": connection.connection_id, "error": e.message},
            )
            await self._send_error(connection, e.message, e.code)
            return

        if message is None:
            logger.debug(
                "Ignoring message with unknown type",
                extra={"connection_id": connection.connection_id},
            )
            return

        self._metrics.record_message(message.type)

        try:
            await self.dispatch(connection, message)
        except Exception:
            logger.exception(
                "Error handling message",
                extra={"connection_id": connection.connection_id, "type": message.type},
            )
            await self._send_error(connection, "Internal server error", "INTERNAL_ERROR")

    async def dispatch(self, connection: ClientConnection, message: ClientMessage) -> None:
        """Apply a decoded message.

        Raises:
            Exception: Anything unexpected from the operation itself
        """
        if isinstance(message, JoinMessage):
            await self.join(connection, message.session_id)
            return

        session = self._joined_session(connection)
        if session is None:
            await self._send_error(
                connection, "Join a session before sending orders", "NOT_JOINED"
            )
            return

        operation = self._operations[type(message)]
        async with session.lock:
            if self.store.get(session.code) is not session:
                # Expired while this message waited for the lock
                await self._send_error(connection, "Session has expired", "NOT_JOINED")
                return
            await operation(connection, session, message)

    def _joined_session(self, connection: ClientConnection) -> Session | None:
        session = self.registry.session_for(connection)
        if session is None or self.store.get(session.code) is not session:
            return None
        return session

    async def join(self, connection: ClientConnection, session_code: str) -> Session | None:
        """Bind a connection to a session, creating the session if absent.

        Replies to the joining connection only with a full snapshot. Joining
        the same session again just re-sends the snapshot.

        Returns:
            The joined session, or None if the code was blank
        """
        code = normalize_code(session_code)
        if not code:
            await self._send_error(connection, "Session code is required", "INVALID_MESSAGE")
            return None

        while True:
            session, created = self.store.get_or_create(code)
            if not created and self.store.is_expired(session):
                # The sweeper has not reached it yet; retire it and start fresh
                logger.info("Join to expired session, replacing", extra={"session_code": code})
                await self.sweeper.expire(session, spare=connection)
                continue

            async with session.lock:
                if self.store.get(code) is not session:
                    # Expired while waiting for the lock
                    continue
                self.registry.bind(connection, session)
                await self.broadcaster.send_snapshot(connection, session)
            break

        self._metrics.record_join()
        logger.info(
            "Connection joined session",
            extra={
                "connection_id": connection.connection_id,
                "session_code": code,
                "session_created": created,
                "members": len(session.connections),
            },
        )
        return session

    async def disconnect(self, connection: ClientConnection) -> None:
        """Remove a closed connection from its session.

        The session stays in the store even with no connections left.
        """
        session = self.registry.unbind(connection)
        if session is not None:
            logger.info(
                "Connection left session",
                extra={
                    "connection_id": connection.connection_id,
                    "session_code": session.code,
                    "remaining": len(session.connections),
                },
            )

    async def _add_order(
        self, connection: ClientConnection, session: Session, message: AddOrderMessage
    ) -> None:
        try:
            fields = validate_order(message.order.model_dump(), self.limits)
        except OrderValidationError as e:
            await self._reject(connection, session, e)
            return

        order_item = OrderItem(
            item=fields.item,
            quantity=fields.quantity,
            name=fields.name,
            price=fields.price,
            notes=fields.notes,
        )
        session.add_item(order_item)
        logger.debug(
            "Order added",
            extra={"session_code": session.code, "order_id": order_item.id},
        )
        await self.broadcaster.broadcast_state(session)

    async def _remove_order(
        self, connection: ClientConnection, session: Session, message: RemoveOrderMessage
    ) -> None:
        removed = session.remove_item(message.order_id)
        logger.debug(
            "Order removal",
            extra={"session_code": session.code, "order_id": message.order_id, "removed": removed},
        )
        # Broadcast even when nothing matched
        await self.broadcaster.broadcast_state(session)

    async def _toggle_order_status(
        self, connection: ClientConnection, session: Session, message: ToggleOrderStatusMessage
    ) -> None:
        order_item = session.find_item(message.order_id)
        if order_item is None:
            await self._reject(
                connection, session, OrderValidationError("Order not found", "ORDER_NOT_FOUND")
            )
            return

        order_item.toggle()
        await self.broadcaster.broadcast_state(session)

    async def _set_tax(
        self, connection: ClientConnection, session: Session, message: SetTaxMessage
    ) -> None:
        try:
            tax_percent = validate_tax(message.tax_percent, self.limits)
        except OrderValidationError as e:
            await self._reject(connection, session, e)
            return

        session.tax_percent = tax_percent
        await self.broadcaster.broadcast_state(session)

    async def _reject(
        self, connection: ClientConnection, session: Session, error: OrderValidationError
    ) -> None:
        self._metrics.record_validation_error()
        logger.info(
            "Message rejected",
            extra={
                "connection_id": connection.connection_id,
                "session_code": session.code,
                "code": error.code,
                "reason": error.message,
            },
        )
        await self._send_error(connection, error.message, error.code)

    async def _send_error(self, connection: ClientConnection, message: str, code: str) -> None:
        await connection.send(ErrorMessage(message=message, code=code))
