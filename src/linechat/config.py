"""
=============================================================================
CHAT CONFIGURATION
=============================================================================

Centralized configuration for the chat server and client.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m linechat server --port 7000                     │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CHAT_PORT=7000 python -m linechat server                  │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

There is no configuration file. Nothing is persisted.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional

from .protocol import DEFAULT_PORT


_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class ChatConfig:
    """
    Configuration for the chat server (and the client's endpoint).

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, accept_poll_interval, write_timeout

    LINE FRAMING
    - buffer_size, max_line_length, encoding

    CHAT BEHAVIOR
    - announce_departures

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to (server) or connect to (client).
    - "127.0.0.1" - Localhost only
    - "0.0.0.0" - All network interfaces
    """

    port: int = DEFAULT_PORT
    """
    TCP port. 0 asks the OS for a free port (handy in tests).
    """

    backlog: int = 128
    """
    Maximum number of queued, not yet accepted connections.
    """

    accept_poll_interval: float = 1.0
    """
    Timeout on accept() in seconds. The acceptor wakes up this often to
    notice a shutdown request.
    """

    write_timeout: Optional[float] = 10.0
    """
    Seconds one line may take to send. A peer that stops reading turns
    into a failed write after this long, and is dropped from the chat.
    None waits forever.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LINE FRAMING
    # ─────────────────────────────────────────────────────────────────────

    buffer_size: int = 4096
    """Bytes requested per recv() call."""

    max_line_length: int = 64 * 1024
    """
    Longest line (in bytes, delimiter excluded) a peer may send.
    An unterminated line past this size is treated as a read failure.
    """

    encoding: str = "utf-8"
    """Text encoding on the wire."""

    # ─────────────────────────────────────────────────────────────────────
    # CHAT BEHAVIOR
    # ─────────────────────────────────────────────────────────────────────

    announce_departures: bool = True
    """
    Broadcast "<username> has left the chat" when a registered
    participant disconnects. False keeps departures silent.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    @classmethod
    def from_env(cls) -> "ChatConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CHAT_HOST                   Host (default: 127.0.0.1)
        CHAT_PORT                   Port (default: 9999)
        CHAT_BACKLOG                Listen backlog (default: 128)
        CHAT_MAX_LINE               Max line length in bytes (default: 65536)
        CHAT_WRITE_TIMEOUT          Send timeout in seconds (default: 10)
        CHAT_ANNOUNCE_DEPARTURES    1/0, true/false (default: true)
        CHAT_LOG_LEVEL              Logging level (default: INFO)

        =====================================================================
        """
        return cls(
            host=os.getenv("CHAT_HOST", "127.0.0.1"),
            port=int(os.getenv("CHAT_PORT", str(DEFAULT_PORT))),
            backlog=int(os.getenv("CHAT_BACKLOG", "128")),
            max_line_length=int(os.getenv("CHAT_MAX_LINE", str(64 * 1024))),
            write_timeout=float(os.getenv("CHAT_WRITE_TIMEOUT", "10")),
            announce_departures=(
                os.getenv("CHAT_ANNOUNCE_DEPARTURES", "true").strip().lower() in _TRUTHY
            ),
            log_level=os.getenv("CHAT_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once at startup so a bad value fails immediately instead of
        in the middle of a chat.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 256:
            raise ValueError("buffer_size must be >= 256")

        if self.max_line_length < 1:
            raise ValueError("max_line_length must be >= 1")

        if self.accept_poll_interval <= 0:
            raise ValueError("accept_poll_interval must be > 0")

        if self.write_timeout is not None and self.write_timeout <= 0:
            raise ValueError("write_timeout must be > 0 or None")
