"""
=============================================================================
SESSION REGISTRY
=============================================================================

The process-wide set of live, handshaken Sessions, and the broadcast
fan-out over that set.

=============================================================================
ONE LOCK, THREE OPERATIONS
=============================================================================

    Session thread A ── add(a) ────────┐
    Session thread B ── broadcast(t) ──┼──► _lock ──► _members
    Session thread C ── remove(c) ─────┘

add(), remove() and broadcast() are mutually exclusive. A broadcast
therefore always iterates a consistent membership and never writes to a
Session after its remove() has returned. Delivery order to any single
recipient follows the order in which broadcast() calls acquired the lock.

The lock is held while writing, so a peer that stops reading can stall
broadcasts until the kernel send buffer drains or the peer resets.

=============================================================================
FAILED RECIPIENTS
=============================================================================

A recipient whose write fails does not interrupt delivery to the others.
Failed recipients are collected during the pass and evicted after it
(still under the lock), and their connections are aborted so that their
own read loops see end of stream and run the normal teardown.

=============================================================================
"""

import logging
import threading
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .session import Session


logger = logging.getLogger(__name__)


class Registry:
    """
    Concurrency-safe set of active Sessions.

    Usernames are not required to be unique; members are tracked by
    identity only.

    Usage:
        registry = Registry()
        registry.add(session)
        delivered = registry.broadcast("alice: hello")
        registry.remove(session)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._members: set = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, session) -> bool:
        with self._lock:
            return session in self._members

    def snapshot(self) -> list:
        """Current members, as a new list."""
        with self._lock:
            return list(self._members)

    @property
    def usernames(self) -> list[str]:
        """Sorted usernames of current members (duplicates kept)."""
        return sorted(member.username for member in self.snapshot())

    def add(self, session: "Session") -> None:
        with self._lock:
            self._members.add(session)
            count = len(self._members)
        logger.info(f"{session.username} registered ({count} online)")

    def remove(self, session: "Session") -> bool:
        """
        Remove ``session`` if present.

        Returns:
            True if it was a member, False if it was already gone.
        """
        with self._lock:
            if session not in self._members:
                return False
            self._members.discard(session)
            count = len(self._members)
        logger.info(f"{session.username} left ({count} online)")
        return True

    def broadcast(self, text: str, exclude: Optional["Session"] = None) -> int:
        """
        Deliver ``text`` to every member except ``exclude``.

        Args:
            text: One line, without delimiter.
            exclude: A member to skip (used for join notices).

        Returns:
            Number of members the line was delivered to.
        """
        delivered = 0
        failed = []

        with self._lock:
            for member in self._members:
                if member is exclude:
                    continue
                if member.send(text):
                    delivered += 1
                else:
                    failed.append(member)

            for member in failed:
                self._members.discard(member)

        for member in failed:
            logger.warning(f"Dropping {member.username}: delivery failed")
            member.abort()

        return delivered
