"""Connection registry.

Tracks which session each live connection is bound to and keeps every
session's connection set in step with those bindings. A connection belongs
to at most one session at a time.
"""

import logging

from ordersync.connection import ClientConnection
from ordersync.models import Session

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Per-session membership of live connections."""

    def __init__(self) -> None:
        self._bindings: dict[ClientConnection, Session] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def session_for(self, connection: ClientConnection) -> Session | None:
        """Return the session a connection is bound to, if any."""
        return self._bindings.get(connection)

    def bind(self, connection: ClientConnection, session: Session) -> Session | None:
        """Register a connection into a session's connection set.

        Binding to the session it is already in is a no-op. Binding to a
        different session moves the connection.

        Returns:
            The session the connection was moved out of, if any
        """
        previous = self._bindings.get(connection)
        if previous is session:
            session.connections.add(connection)
            return None

        if previous is not None:
            previous.connections.discard(connection)
            logger.info(
                "Connection moved between sessions",
                extra={
                    "connection_id": connection.connection_id,
                    "from_session": previous.code,
                    "to_session": session.code,
                },
            )

        self._bindings[connection] = session
        session.connections.add(connection)
        return previous

    def unbind(self, connection: ClientConnection) -> Session | None:
        """Remove a connection from its session.

        The session itself is left in place even when this was its last
        connection; only the expiry sweeper deletes sessions.

        Returns:
            The session the connection was bound to, if any
        """
        session = self._bindings.pop(connection, None)
        if session is not None:
            session.connections.discard(connection)
            logger.debug(
                "Connection unbound",
                extra={
                    "connection_id": connection.connection_id,
                    "session_code": session.code,
                    "remaining": len(session.connections),
                },
            )
        return session

    def release_session(self, session: Session) -> list[ClientConnection]:
        """Unbind every connection of a session that is being removed.

        Returns:
            The connections that were members
        """
        members = list(session.connections)
        for connection in members:
            if self._bindings.get(connection) is session:
                del self._bindings[connection]
        session.connections.clear()
        return members
