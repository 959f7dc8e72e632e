"""
=============================================================================
CHAT CLIENT DRIVER
=============================================================================

Runs two loops over ONE Connection:

    ┌──────────────────────┐                    ┌──────────────────────┐
    │   listen loop        │  read side         │   send loop          │
    │   (daemon thread)    │ ◄──── server ────► │   (caller's thread)  │
    │                      │        write side  │                      │
    │ read_line()          │                    │ read_input()         │
    │   └─► display(line)  │                    │   └─► write_line()   │
    └──────────────────────┘                    └──────────────────────┘

HANDSHAKE
    Right after connecting, the bare username is written as the first
    line. The server treats that line as the registration.

STOPPING
    There is no cancellation token. The listen loop, on end of stream,
    closes the connection and clears the running flag; a send loop blocked
    in read_input() notices on its next iteration or its next failed
    write. The send loop, on end of input or a failed write, closes the
    connection, which wakes the listen loop with end of stream.
    "Disconnected from server" is reported only when the user did not end
    the session (end of input or Ctrl+C).

The console (prompts, colors) is injected as three callables so the
driver can be scripted in tests.

=============================================================================
"""

import logging
import threading
from typing import Callable, Optional

from .config import ChatConfig
from .core import Connection, LineTooLongError
from .protocol import format_chat_line


logger = logging.getLogger(__name__)

BLANK_MESSAGE_PROMPT = "Message cannot be empty. Type something to send."


class ChatClient:
    """
    Client-side dual-channel driver.

    Args:
        username: Name to register under. Must not be blank.
        config: Supplies host, port and line-framing limits.
        read_input: Blocks until the user enters a line; may raise EOFError.
        display: Receives every inbound line.
        status: Receives connection-status strings and input prompts.

    Usage:
        client = ChatClient("alice", ChatConfig(host="10.0.0.5"))
        client.connect()
        client.run()      # blocks until either side ends
    """

    def __init__(
        self,
        username: str,
        config: Optional[ChatConfig] = None,
        read_input: Callable[[], str] = input,
        display: Callable[[str], None] = print,
        status: Optional[Callable[[str], None]] = None,
    ):
        self.username = username.strip()
        if not self.username:
            raise ValueError("username must not be blank")

        self.config = config or ChatConfig()
        self.read_input = read_input
        self.display = display
        self.status = status or display

        self.connection: Optional[Connection] = None
        self._running = threading.Event()
        self._user_quit = threading.Event()
        self._listener: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    # =========================================================================
    # CONNECT + HANDSHAKE
    # =========================================================================

    def connect(self):
        """
        Open the connection and send the username line. Single attempt.

        Raises:
            OSError: Could not connect (refused, unreachable, ...).
            ConnectionError: The server went away before the handshake.
        """
        host, port = self.config.host, self.config.port
        self.connection = Connection.open(
            host,
            port,
            buffer_size=self.config.buffer_size,
            max_line_length=self.config.max_line_length,
            encoding=self.config.encoding,
            write_timeout=self.config.write_timeout,
        )

        if not self.connection.write_line(self.username):
            self.connection.close()
            raise ConnectionError(f"{host}:{port} closed the connection during handshake")

        self._running.set()
        logger.info(f"Connected to {host}:{port} as {self.username}")
        self.status(f"Connected to {host}:{port}")

    # =========================================================================
    # RUNNING
    # =========================================================================

    def run(self):
        """Start the listen loop and run the send loop until either ends."""
        if self.connection is None:
            self.connect()

        self.start_listening()
        try:
            self._send_loop()
        except KeyboardInterrupt:
            self._user_quit.set()
        finally:
            self.close()

    def start_listening(self) -> threading.Thread:
        """Run the listen loop on a daemon thread."""
        self._listener = threading.Thread(
            target=self._listen_loop,
            name="chat-listener",
            daemon=True,
        )
        self._listener.start()
        return self._listener

    def _listen_loop(self):
        conn = self.connection
        try:
            for line in conn:
                self.display(line)
        except (OSError, LineTooLongError) as e:
            logger.warning(f"Receive failed: {e}")
        finally:
            self._running.clear()
            conn.close()
            if not self._user_quit.is_set():
                self.status("Disconnected from server")

    def _send_loop(self):
        while self._running.is_set():
            try:
                line = self.read_input()
            except EOFError:
                self._user_quit.set()
                break

            if not self._running.is_set():
                break

            if not line.strip():
                self.status(BLANK_MESSAGE_PROMPT)
                continue

            if not self.send(line):
                break

    def send(self, text: str) -> bool:
        """
        Send one chat message, prefixed with the username.

        Returns:
            False if the connection is gone (the driver then stops).
        """
        if self.connection is None:
            return False
        if not self.connection.write_line(format_chat_line(self.username, text)):
            self._running.clear()
            return False
        return True

    # =========================================================================
    # STOPPING
    # =========================================================================

    def close(self):
        """Stop both loops and release the connection. Idempotent."""
        self._running.clear()
        if self.connection is not None:
            self.connection.close()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the listen loop to finish.

        Returns:
            True if it finished, False on timeout.
        """
        if self._listener is None:
            return True
        self._listener.join(timeout)
        return not self._listener.is_alive()
