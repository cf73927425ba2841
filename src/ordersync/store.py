"""In-memory session store.

Process-wide mapping from session code to Session. The store is the single
writer of that mapping; it is used from one asyncio event loop and does not
lock around its own dict operations.
"""

import logging
import secrets
import string
import time
from collections.abc import Callable, Iterator
from enum import Enum

from ordersync.config import LimitsConfig, SessionConfig
from ordersync.metrics import MetricsCollector, get_metrics_collector
from ordersync.models import Session

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


class LookupStatus(Enum):
    """Result of looking up a session by code."""

    EXISTS = "exists"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


def generate_session_code(length: int = 6) -> str:
    """Generate a human-readable session code.

    Args:
        length: Number of characters

    Returns:
        Uppercase alphanumeric code
    """
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    """Normalize a client-supplied code for lookup."""
    return code.strip().upper()


class SessionStore:
    """Owns creation, lookup, expiry and deletion of sessions."""

    def __init__(
        self,
        session_config: SessionConfig | None = None,
        limits: LimitsConfig | None = None,
        clock: Callable[[], float] = time.time,
        code_factory: Callable[[int], str] = generate_session_code,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize session store.

        Args:
            session_config: Timeout and code generation settings
            limits: Item/tax bounds (used for the default tax rate)
            clock: Source of the current time in seconds
            code_factory: Generates a candidate code of a given length
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self.session_config = session_config or SessionConfig()
        self.limits = limits or LimitsConfig()
        self._clock = clock
        self._code_factory = code_factory
        self._metrics = metrics or get_metrics_collector()
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, code: object) -> bool:
        return code in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    @property
    def timeout_seconds(self) -> int:
        """Age after which sessions expire."""
        return self.session_config.timeout_seconds

    def now(self) -> float:
        """Current time according to the store's clock."""
        return self._clock()

    def _new_session(self, code: str) -> Session:
        session = Session(
            code=code,
            created_at=self._clock(),
            tax_percent=self.limits.default_tax_percent,
        )
        self._sessions[code] = session
        self._metrics.record_session_created()
        logger.info("Session created", extra={"session_code": code})
        return session

    def create(self) -> Session:
        """Create an empty session under a fresh, unused code.

        Returns:
            The new session

        Raises:
            RuntimeError: If no unused code was drawn within the attempt limit
        """
        attempts = self.session_config.max_code_attempts
        for _ in range(attempts):
            code = self._code_factory(self.session_config.code_length)
            if code not in self._sessions:
                return self._new_session(code)
            logger.debug("Session code collision, regenerating", extra={"session_code": code})

        raise RuntimeError(f"Could not generate an unused session code after {attempts} attempts")

    def get(self, code: str) -> Session | None:
        """Return the session for ``code`` if present (expired or not)."""
        return self._sessions.get(code)

    def get_or_create(self, code: str) -> tuple[Session, bool]:
        """Return the session for ``code``, creating an empty one if absent.

        Args:
            code: Session code (already normalized)

        Returns:
            Tuple of (session, created)
        """
        session = self._sessions.get(code)
        if session is not None:
            return session, False
        return self._new_session(code), True

    def delete(self, code: str) -> Session | None:
        """Remove a session from the store.

        Returns:
            The removed session, or None if the code was unknown
        """
        session = self._sessions.pop(code, None)
        if session is not None:
            self._metrics.record_session_deleted()
            logger.info("Session deleted", extra={"session_code": code})
        return session

    def is_expired(self, session: Session) -> bool:
        """Check a session's age against the configured timeout."""
        return session.is_expired(self._clock(), self.timeout_seconds)

    def lookup(self, code: str) -> tuple[LookupStatus, Session | None]:
        """Look up a session, evicting it if it has expired.

        Returns:
            Tuple of (status, session). For EXPIRED the session is the evicted
            record so the caller can notify its connections.
        """
        session = self._sessions.get(code)
        if session is None:
            return LookupStatus.NOT_FOUND, None
        if self.is_expired(session):
            self.delete(code)
            return LookupStatus.EXPIRED, session
        return LookupStatus.EXISTS, session

    def expired_sessions(self) -> list[Session]:
        """List sessions whose age exceeds the timeout."""
        now = self._clock()
        return [
            session
            for session in self._sessions.values()
            if session.is_expired(now, self.timeout_seconds)
        ]
