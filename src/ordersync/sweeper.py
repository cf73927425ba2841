"""Expiry sweeper.

Background task that periodically evicts sessions older than the configured
timeout. Each expired session's clients are sent ``session_expired`` and then
closed before the session is removed from the store.
"""

import asyncio
import logging

from ordersync.connection import ClientConnection
from ordersync.metrics import MetricsCollector, get_metrics_collector
from ordersync.models import Session
from ordersync.protocol import SessionExpiredMessage
from ordersync.registry import ConnectionRegistry
from ordersync.store import LookupStatus, SessionStore

logger = logging.getLogger(__name__)

SESSION_EXPIRED_CLOSE_CODE = 1000


class ExpirySweeper:
    """Reaps expired sessions on a fixed interval."""

    def __init__(
        self,
        store: SessionStore,
        registry: ConnectionRegistry,
        interval_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize expiry sweeper.

        Args:
            store: Session store to sweep
            registry: Connection registry (members are unbound on expiry)
            interval_seconds: Sweep interval (defaults to the store's config)
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self.store = store
        self.registry = registry
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else store.session_config.sweep_interval_seconds
        )
        self._metrics = metrics or get_metrics_collector()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Check if the background sweep loop is active."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background sweep loop.

        Raises:
            RuntimeError: If the sweeper is already running
        """
        if self.is_running:
            raise RuntimeError("Expiry sweeper is already running")

        self._task = asyncio.create_task(self._run(), name="ordersync-expiry-sweeper")
        logger.info("Expiry sweeper started", extra={"interval_s": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")

    async def sweep_once(self) -> list[str]:
        """Expire every session older than the timeout.

        A failure while expiring one session is logged and does not stop the
        sweep of the others.

        Returns:
            Codes of the sessions that were expired
        """
        expired: list[str] = []
        for session in self.store.expired_sessions():
            try:
                if await self.expire(session):
                    expired.append(session.code)
            except Exception:
                logger.exception(
                    "Failed to expire session", extra={"session_code": session.code}
                )

        if expired:
            logger.info(
                "Expiry sweep complete",
                extra={"expired": len(expired), "remaining": len(self.store)},
            )
        return expired

    async def expire(self, session: Session, spare: ClientConnection | None = None) -> bool:
        """Notify, disconnect and remove one session.

        Waits for any in-flight mutation on the session to finish first, then
        holds the session lock while clients are notified and closed so no
        further mutation can land on it.

        Args:
            session: Session to retire
            spare: Member left open and unnotified (a connection rejoining
                the same code); it is still unbound from the session

        Returns:
            True if this call removed the session, False if it was already gone
        """
        async with session.lock:
            if self.store.get(session.code) is not session:
                self.registry.release_session(session)
                return False

            members = [c for c in session.connections if c is not spare]
            logger.info(
                "Session has expired",
                extra={"session_code": session.code, "connections": len(members)},
            )
            await self._notify_and_close(session, members)
            self.registry.release_session(session)
            self.store.delete(session.code)

        self._metrics.record_session_expired()
        return True

    async def lookup(self, code: str) -> LookupStatus:
        """Look up a session for the HTTP layer, expiring it if stale.

        Returns:
            EXISTS, NOT_FOUND, or EXPIRED (the session has been evicted and its
            clients notified)
        """
        session = self.store.get(code)
        if session is not None and self.store.is_expired(session):
            await self.expire(session)
            return LookupStatus.EXPIRED

        status, _ = self.store.lookup(code)
        return status

    async def _notify_and_close(self, session: Session, members: list[ClientConnection]) -> None:
        if not members:
            return

        message = SessionExpiredMessage()

        async def notify(connection: ClientConnection) -> None:
            await connection.send(message)
            await connection.close(code=SESSION_EXPIRED_CLOSE_CODE, reason="Session has expired")

        results = await asyncio.gather(
            *(notify(connection) for connection in members), return_exceptions=True
        )
        for connection, result in zip(members, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Failed to notify connection of expiry",
                    extra={
                        "session_code": session.code,
                        "connection_id": connection.connection_id,
                        "error": str(result),
                    },
                )
