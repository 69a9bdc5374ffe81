"""Bounded pool of authenticated IMAP sessions.

Sessions are created lazily up to ``max_size`` and handed out for exclusive
use. A session that fails mid-operation is marked broken and closed instead
of going back to the idle set; its slot is refilled by the next caller that
needs one.

Usage:
    pool = ConnectionPool(lambda: open_session(config, credentials))
    with pool.connection() as conn:
        conn.uid("search", None, "ALL")
"""

import imaplib
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, Iterator, Optional

from inboxview.errors import PoolTimeoutError, TransportError
from inboxview.imap.auth import close_quietly

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 5
DEFAULT_TIMEOUT = 10.0

# Errors that leave a session in an unknown protocol state
TRANSPORT_ERRORS = (imaplib.IMAP4.error, OSError)


class ConnectionState(str, Enum):
    """Lifecycle states for a pooled session."""

    IDLE = "idle"
    IN_USE = "in_use"
    BROKEN = "broken"


@dataclass
class PooledConnection:
    """A live session owned by the pool."""

    session: imaplib.IMAP4
    state: ConnectionState = ConnectionState.IN_USE
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    checked_out: bool = True

    def mark_broken(self) -> None:
        self.state = ConnectionState.BROKEN


class ConnectionPool:
    """Thread-safe IMAP connection pool.

    Only the idle/open bookkeeping is guarded by the pool lock. Creating a
    session, checking an idle one, and every command run on a checked-out
    session happen outside it.
    """

    def __init__(
        self,
        factory: Callable[[], imaplib.IMAP4],
        max_size: int = DEFAULT_MAX_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize pool.

        Args:
            factory: Returns a new authenticated session with the folder selected
            max_size: Maximum number of simultaneously open sessions
            timeout: Default seconds acquire() waits for a free session
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._factory = factory
        self.max_size = max_size
        self.timeout = timeout
        self._idle: Deque[PooledConnection] = deque()
        self._open = 0
        self._closed = False
        self._cond = threading.Condition(threading.Lock())
        logger.info("Initialized IMAP connection pool with max_size=%d", max_size)

    def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        """Check out a session for exclusive use.

        Args:
            timeout: Seconds to wait for capacity (default: pool timeout)

        Returns:
            PooledConnection in the IN_USE state

        Raises:
            PoolTimeoutError: No session became available in time
            AuthExhaustedError, TransportError: Creating a new session failed
        """
        wait = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + wait

        while True:
            handle = None
            with self._cond:
                while True:
                    if self._closed:
                        raise PoolTimeoutError("Connection pool is closed")
                    if self._idle:
                        handle = self._idle.popleft()
                        handle.state = ConnectionState.IN_USE
                        handle.checked_out = True
                        break
                    if self._open < self.max_size:
                        # Reserve the slot; the session is created outside the lock
                        self._open += 1
                        break
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise PoolTimeoutError(
                            f"No IMAP connection available after {wait:.1f}s "
                            f"({self.max_size} in use)"
                        )
                    self._cond.wait(remaining)

            if handle is None:
                return self._create()

            if self._is_alive(handle):
                handle.last_used = time.monotonic()
                return handle

            logger.debug("Idle IMAP session went stale, discarding")
            self.discard(handle)

    def _create(self) -> PooledConnection:
        try:
            session = self._factory()
        except BaseException:
            with self._cond:
                self._open -= 1
                self._cond.notify()
            logger.warning("Failed to create IMAP session", exc_info=True)
            raise
        logger.debug("Created IMAP session (%d/%d open)", self._open, self.max_size)
        return PooledConnection(session=session)

    @staticmethod
    def _is_alive(handle: PooledConnection) -> bool:
        try:
            status, _ = handle.session.noop()
        except TRANSPORT_ERRORS:
            return False
        return status == "OK"

    def release(self, handle: PooledConnection) -> None:
        """Return a session to the pool, or close it if it is broken.

        Releasing a handle that was already released does nothing.
        """
        with self._cond:
            if not handle.checked_out:
                return
            handle.checked_out = False
            keep = handle.state is ConnectionState.IN_USE and not self._closed
            if keep:
                handle.state = ConnectionState.IDLE
                handle.last_used = time.monotonic()
                self._idle.append(handle)
            else:
                handle.state = ConnectionState.BROKEN
                self._open -= 1
            self._cond.notify()

        if not keep:
            close_quietly(handle.session)
            logger.debug("Closed IMAP session (%d/%d open)", self._open, self.max_size)

    def discard(self, handle: PooledConnection) -> None:
        """Close a checked-out session and free its slot."""
        handle.mark_broken()
        self.release(handle)

    @contextmanager
    def connection(self, timeout: Optional[float] = None) -> Iterator[imaplib.IMAP4]:
        """Check out a session for the duration of a with-block.

        Transport-level errors raised inside the block mark the session
        broken and are re-raised as TransportError. The session is released
        on every exit path.
        """
        handle = self.acquire(timeout)
        try:
            yield handle.session
        except TRANSPORT_ERRORS as e:
            handle.mark_broken()
            logger.warning("IMAP session failed, discarding: %s", e)
            raise TransportError(f"IMAP operation failed: {e}") from e
        finally:
            self.release(handle)

    def stats(self) -> Dict[str, int]:
        """Snapshot of pool occupancy."""
        with self._cond:
            idle = len(self._idle)
            return {
                "open": self._open,
                "idle": idle,
                "in_use": self._open - idle,
                "max_size": self.max_size,
            }

    def close(self) -> None:
        """Close idle sessions. Sessions still in use close when released."""
        with self._cond:
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._open -= len(idle)
            self._cond.notify_all()

        for handle in idle:
            handle.state = ConnectionState.BROKEN
            close_quietly(handle.session)
        if idle:
            logger.info("Closed %d idle IMAP sessions", len(idle))
