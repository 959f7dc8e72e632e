"""
=============================================================================
SERVER-SIDE SESSION
=============================================================================

One Session per accepted connection, running on its own thread.

=============================================================================
SESSION STATE MACHINE
=============================================================================

    CONNECTING ──► HANDSHAKING ──────────► ACTIVE ──────────► CLOSED
                        │      non-blank      │   EOF, error,     ▲
                        │      username       │   blank line      │
                        │                     │                   │
                        └─────────────────────┴───────────────────┘
                         blank/absent username:
                         rejection line, never registered

HANDSHAKING
    The first line is the username. It is stripped; if nothing is left
    the client gets one rejection line and the connection is closed.

ACTIVE
    The session is in the Registry. The joiner is added first and the
    join notice is broadcast to everybody else, so the joiner never sees
    its own join notice. Every non-blank line read is broadcast verbatim
    to ALL members, sender included.

CLOSED
    Removed from the Registry, connection released, and (optionally) a
    leave notice broadcast to the remaining members. Reaching CLOSED is
    idempotent: close() may run more than once.

=============================================================================
"""

import logging
import threading
from enum import Enum
from typing import Optional

from .core.connection import Connection, LineTooLongError
from .protocol import REJECT_EMPTY_USERNAME, join_notice, leave_notice
from .registry import Registry


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session lifecycle states."""
    CONNECTING = "connecting"    # Accepted, nothing read yet
    HANDSHAKING = "handshaking"  # Waiting for the username line
    ACTIVE = "active"            # Registered, relaying lines
    CLOSED = "closed"            # Terminal


class Session:
    """
    A chat participant on the server side.

    Attributes:
        connection: The Connection this session owns and eventually closes.
        registry: Shared registry, injected by the server.
        announce_departures: Broadcast a leave notice on teardown.
        state: Current SessionState.
    """

    def __init__(
        self,
        connection: Connection,
        registry: Registry,
        announce_departures: bool = True,
    ):
        self.connection = connection
        self.registry = registry
        self.announce_departures = announce_departures
        self.state = SessionState.CONNECTING

        self._username: Optional[str] = None
        self._state_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, username={self._username!r}, state={self.state.value})"

    @property
    def id(self) -> str:
        return self.connection.id

    @property
    def username(self) -> Optional[str]:
        """Set once by a successful handshake, never changed afterwards."""
        return self._username

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    # =========================================================================
    # REGISTRY-FACING API
    # =========================================================================

    def send(self, text: str) -> bool:
        """Write one line to this participant. Called by Registry.broadcast."""
        return self.connection.write_line(text)

    def abort(self):
        """Wake this session's read loop so it tears itself down."""
        self.connection.abort()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Thread entry point: handshake (unless already ACTIVE), relay
        lines, tear down.

        Never raises. Any failure is scoped to this session.
        """
        logger.debug(f"[{self.id}] Session started for {self.connection.peer}")

        try:
            if self.state is SessionState.ACTIVE or self.handshake():
                self._relay_lines()
        except LineTooLongError as e:
            logger.warning(f"[{self.id}] {e}, closing")
        except OSError as e:
            logger.warning(f"[{self.id}] Read failed: {e}")
        except Exception as e:
            logger.exception(f"[{self.id}] Session error: {e}")
        finally:
            self.close()

    def handshake(self) -> bool:
        """
        Read the username line and register.

        Returns:
            True if the session is now ACTIVE, False if it was rejected.
        """
        with self._state_lock:
            if self.state is not SessionState.CONNECTING:
                return False
            self.state = SessionState.HANDSHAKING

        line = self.connection.read_line()
        username = line.strip() if line is not None else ""

        if not username:
            logger.warning(f"[{self.id}] Rejected handshake from {self.connection.peer}: empty username")
            self.connection.write_line(REJECT_EMPTY_USERNAME)
            return False

        with self._state_lock:
            if self.state is not SessionState.HANDSHAKING:
                return False  # Closed while waiting for the username
            self._username = username
            self.state = SessionState.ACTIVE

        self.registry.add(self)
        logger.info(f"[{self.id}] {username} has joined from {self.connection.peer}")
        self.registry.broadcast(join_notice(username), exclude=self)
        return True

    def _relay_lines(self):
        for line in self.connection:
            if not line.strip():
                logger.debug(f"[{self.id}] Blank line, ending session")
                break
            logger.debug(f"[{self.id}] > {line}")
            self.registry.broadcast(line)

    def close(self):
        """
        Tear the session down. Idempotent and thread-safe.

        Removes the session from the registry before releasing the
        connection, so no broadcast can target a closed connection it
        still believes is live.
        """
        with self._state_lock:
            if self.state is SessionState.CLOSED:
                return
            was_active = self.state is SessionState.ACTIVE
            self.state = SessionState.CLOSED

        if was_active:
            self.registry.remove(self)

        self.connection.close()

        if was_active:
            logger.info(f"[{self.id}] {self._username} disconnected")
            if self.announce_departures:
                self.registry.broadcast(leave_notice(self._username))
        else:
            logger.debug(f"[{self.id}] Session closed before registration")
