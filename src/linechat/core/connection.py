"""
=============================================================================
LINE-ORIENTED CONNECTION
=============================================================================

This module wraps one TCP socket with a line-oriented read/write API.
Every chat message on the wire is exactly one line of UTF-8 text.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP does NOT preserve message boundaries. Two lines written by a peer:

    write("alice: hi\\n")
    write("alice: how are you?\\n")

might be received as any of:

    recv() → "alice: hi\\nalice: how are you?\\n"     (both combined)
    recv() → "alice: h"                              (partial)
    recv() → "i\\nalice: how are you?\\n"             (rest of first + second)

So we keep a buffer and only ever hand out COMPLETE lines:

    ┌─────────────────────────────────────────────────────────────────┐
    │                     read_line() buffering                        │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   _buffer: b"alice: h"          no \\n yet → recv() again         │
    │   _buffer: b"alice: hi\\nali"    found \\n  → return "alice: hi"   │
    │   _buffer: b"ali"               kept for the next call           │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

A trailing partial line at end of stream is dropped, never returned.

=============================================================================
WRITES AND CLOSE ACROSS THREADS
=============================================================================

A Connection is owned by exactly one Session (or one client driver), and
only the owner closes it. Broadcasts, however, write to connections from
OTHER sessions' threads. One lock per connection serializes every write
and the close, so a write never interleaves with another write and never
touches a socket that is mid-close.

    write_line() ──┐
    write_line() ──┼──► _write_lock ──► sendall()
    close()      ──┘

Reads are not locked: only the owner reads.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    OPEN ──────► CLOSING ──────► CLOSED

=============================================================================
"""

import socket
import struct
import sys
import threading
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Iterator, Optional
import uuid

from ..protocol import LINE_DELIMITER


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    OPEN = "open"          # Socket usable in both directions
    CLOSING = "closing"    # close() in progress
    CLOSED = "closed"      # Socket released


class LineTooLongError(ValueError):
    """Raised when a peer sends more than max_line_length bytes without a newline."""


@dataclass
class Connection:
    """
    A bidirectional, line-delimited text stream over one socket.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. LINE FRAMING                                                     │
    │     └── read_line() blocks until a full line or end of stream        │
    │     └── write_line() appends "\\n" and sends it immediately           │
    │                                                                      │
    │  2. FAILURE REPORTING                                                │
    │     └── Peer reset reads as end of stream (None)                    │
    │     └── Write failures return False instead of raising              │
    │                                                                      │
    │  3. IDEMPOTENT CLOSE                                                 │
    │     └── Safe to call any number of times, from any thread           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The connected socket.
        address: Peer (ip, port) tuple.
        id: Short identifier used in log lines.
        state: Current connection state.
        lines_read: Number of complete lines read.
        lines_written: Number of lines written.
        write_timeout: Seconds a single write may block, or None for no limit.
    """

    # Required parameters
    socket: socket.socket
    address: tuple[str, int]

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.OPEN
    lines_read: int = 0
    lines_written: int = 0

    # Configuration (passed from ChatConfig)
    buffer_size: int = 4096
    max_line_length: int = 64 * 1024
    encoding: str = "utf-8"
    write_timeout: Optional[float] = None

    # Internal state
    _buffer: bytes = field(default=b"", repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        # Chat connections idle for as long as the user is silent, so no timeout.
        self.socket.settimeout(None)
        if self.write_timeout is not None:
            self._set_send_timeout(self.write_timeout)

    def _set_send_timeout(self, seconds: float):
        """
        Bound how long sendall() may block on a peer that stopped reading.

        SO_SNDTIMEO only limits sends, so the owner's blocking reads are
        unaffected. An expired send raises BlockingIOError in write_line().
        """
        if sys.platform == "win32":
            value = struct.pack("L", int(seconds * 1000))
        else:
            whole = int(seconds)
            value = struct.pack("ll", whole, int((seconds - whole) * 1_000_000))
        try:
            self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_SNDTIMEO, value)
        except OSError as e:
            logger.warning(f"[{self.id}] Could not set send timeout: {e}")

    @classmethod
    def open(cls, host: str, port: int, **kwargs) -> "Connection":
        """
        Connect to ``host:port`` and wrap the socket.

        A single attempt; connection errors (``ConnectionRefusedError``,
        ``socket.gaierror``, ...) propagate to the caller.
        """
        sock = socket.create_connection((host, port))
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            pass
        return cls(socket=sock, address=(host, port), **kwargs)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def peer(self) -> str:
        """Peer address as "ip:port"."""
        return f"{self.address[0]}:{self.address[1]}"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    # =========================================================================
    # READING
    # =========================================================================

    def read_line(self) -> Optional[str]:
        """
        Read one complete line, without its delimiter.

        A trailing "\\r" is stripped as well, so telnet/netcat clients that
        send CRLF work unchanged.

        Returns:
            The decoded line, or None at end of stream.

        Raises:
            LineTooLongError: The peer exceeded max_line_length.
            OSError: An unexpected socket error on an open connection.
        """
        while True:
            end = self._buffer.find(LINE_DELIMITER)
            if end >= 0:
                raw = self._buffer[:end]
                self._buffer = self._buffer[end + 1:]
                if raw.endswith(b"\r"):
                    raw = raw[:-1]
                if len(raw) > self.max_line_length:
                    raise LineTooLongError(f"Line too long: {len(raw)} bytes")

                self.lines_read += 1
                return raw.decode(self.encoding, errors="replace")

            # One byte of slack for a "\r" whose "\n" has not arrived yet
            if len(self._buffer) > self.max_line_length + 1:
                raise LineTooLongError(f"Line too long: {len(self._buffer)}+ bytes")

            chunk = self._recv()
            if not chunk:
                if self._buffer:
                    logger.debug(f"[{self.id}] Dropping {len(self._buffer)} bytes of partial line")
                    self._buffer = b""
                return None

            self._buffer += chunk

    def __iter__(self) -> Iterator[str]:
        """Lazily yield lines until end of stream."""
        while True:
            line = self.read_line()
            if line is None:
                return
            yield line

    def _recv(self) -> bytes:
        """
        Receive raw bytes, mapping disconnects to b"".

        After close() (possibly from another thread) the socket is gone,
        which also reads as end of stream.
        """
        if self.state is not ConnectionState.OPEN:
            return b""
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""
        except OSError:
            if self.state is not ConnectionState.OPEN:
                return b""
            raise

    # =========================================================================
    # WRITING
    # =========================================================================

    def write_line(self, text: str) -> bool:
        """
        Send ``text`` followed by "\\n", flushed immediately.

        Safe to call from any thread; writes to one connection are
        serialized by its write lock.

        Returns:
            True if the whole line was sent, False if the connection is
            closed or the peer has gone away.
        """
        data = text.encode(self.encoding) + LINE_DELIMITER

        with self._write_lock:
            if self.state is not ConnectionState.OPEN:
                return False
            try:
                self.socket.sendall(data)
            except OSError as e:
                logger.warning(f"[{self.id}] Send failed: {e}")
                return False
            self.lines_written += 1
            return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def abort(self):
        """
        Shut the socket down in both directions without releasing it.

        Any thread blocked in read_line() wakes up with end of stream and
        the owner performs the real close(). Used when someone other than
        the owner learns the connection is dead.
        """
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected

    def close(self):
        """
        Close the connection. Idempotent and thread-safe.

        1. shutdown(SHUT_RDWR): sends FIN and wakes a blocked reader
        2. close(): releases the file descriptor
        """
        with self._write_lock:
            if self.state is not ConnectionState.OPEN:
                return  # Already closed (or closing)

            self.state = ConnectionState.CLOSING

            try:
                self.socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Peer already gone

            try:
                self.socket.close()
            except OSError:
                pass

            self.state = ConnectionState.CLOSED

        logger.debug(
            f"[{self.id}] Connection closed after {self.lines_read} lines in, "
            f"{self.lines_written} lines out"
        )

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False  # Don't suppress exceptions
