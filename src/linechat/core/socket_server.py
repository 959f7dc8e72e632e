"""
=============================================================================
LISTENER / ACCEPTOR LOOP
=============================================================================

This module owns the listening TCP socket. It accepts inbound connections
on a dedicated thread and hands each one, wrapped in a Connection, to a
callback (the chat server spawns a Session thread for it).

    ┌───────────────────────┐
    │   Listening Socket    │ ◄── Created once at startup
    │   (acceptor thread)   │     Never sends/receives chat data
    └───────────┬───────────┘
                │ accept()
        ┌───────┼───────────────────────┐
        ▼       ▼                       ▼
    Connection  Connection   ...    Connection
    (Session 1) (Session 2)         (Session N)

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:  restart immediately without "Address already in use"
TCP_NODELAY:   chat lines are tiny; send them now, not after Nagle's delay

The listening socket gets a short accept() timeout so the loop can notice
a shutdown request without needing another thread to poke it.

=============================================================================
ERRORS
=============================================================================

    bind()/listen() fails       → logged and re-raised (fatal for server mode)
    accept() fails, socket open → logged, loop continues
    accept() fails, socket gone → loop ends, resources released

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ChatConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP listener and accept loop.

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.bind()
        server.start(handle_connection)   # acceptor runs on its own thread
        ...
        server.shutdown()
    """

    def __init__(self, config: ChatConfig):
        """
        Initialize the socket server.

        Note: This does NOT create the socket. That happens in bind().
        """
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None

        self._running = False

        # Set when the accept loop has ended, whatever the reason
        self._stopped_event = threading.Event()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port when config.port is 0."""
        if self._socket is not None:
            host, port = self._socket.getsockname()[:2]
            return (host, port)
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(self.config.accept_poll_interval)
        return sock

    def bind(self):
        """
        Create the listening socket, bind and listen.

        Raises:
            OSError: The address is in use, not permitted, etc.
        """
        sock = self._create_socket()
        try:
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            sock.close()
            raise

        self._socket = sock
        host, port = self.address
        logger.info(f"Chat server listening on {host}:{port}")

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def install_signal_handlers(self, on_signal: Callable[[], None]):
        """
        Turn SIGINT (Ctrl+C) and SIGTERM into a graceful shutdown.

        Only possible from the main thread. Pair with
        restore_signal_handlers() on the same thread.

        Args:
            on_signal: Called when a signal arrives. Must not block.
        """

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            on_signal()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def restore_signal_handlers(self):
        """Put back the handlers replaced by install_signal_handlers()."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def start(self, connection_handler: Callable[[Connection], None]) -> threading.Thread:
        """
        Run the accept loop on a dedicated daemon thread.

        Args:
            connection_handler: Called on the acceptor thread with every new
                                Connection. It must not block for long.

        Returns:
            The acceptor thread.
        """
        if self._socket is None:
            self.bind()

        self._running = True
        self._stopped_event.clear()

        self._thread = threading.Thread(
            target=self._serve,
            args=(connection_handler,),
            name="chat-acceptor",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def _serve(self, connection_handler: Callable[[Connection], None]):
        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        """
        ┌─────────────────────────────────────────────────────────────────┐
        │   while self._running:                                           │
        │       accept()              blocks up to accept_poll_interval    │
        │       Connection(...)       wrap the client socket               │
        │       connection_handler()  spawn a Session                      │
        └─────────────────────────────────────────────────────────────────┘
        """
        while self._running:
            sock = self._socket
            if sock is None:
                break

            try:
                client_socket, client_address = sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running or sock.fileno() == -1:
                    break  # Listening socket closed underneath us
                logger.warning(f"Accept error (continuing): {e}")
                continue

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            try:
                client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                pass

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                max_line_length=self.config.max_line_length,
                encoding=self.config.encoding,
                write_timeout=self.config.write_timeout,
            )

            try:
                connection_handler(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Connection handler failed: {e}")
                conn.close()

        if self._running:
            logger.error("Listening endpoint closed unexpectedly; no new connections will be accepted")

    def shutdown(self):
        """
        Ask the accept loop to stop. Idempotent, callable from any thread
        or a signal handler. The loop notices within accept_poll_interval.
        """
        if self._running:
            logger.info("Shutting down listener...")
        self._running = False

        if self._thread is None and self._socket is not None:
            self._cleanup()  # Bound but never started

    def _cleanup(self):
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._running = False
        self._stopped_event.set()
        logger.info("Listener stopped")

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the accept loop to end.

        Returns:
            True if it ended, False on timeout.
        """
        return self._stopped_event.wait(timeout)
