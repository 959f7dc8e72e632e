"""
=============================================================================
CHAT SERVER
=============================================================================

Ties the listener, the registry and the sessions together.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      CHAT SERVER ARCHITECTURE                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   ChatServer    │                          │
    │                        │  (Orchestrator) │                          │
    │                        └────────┬────────┘                          │
    │                   ┌─────────────┴─────────────┐                     │
    │                   ▼                           ▼                     │
    │           ┌──────────────┐            ┌──────────────┐              │
    │           │ SocketServer │            │   Registry   │              │
    │           │  (acceptor)  │            │ (shared set) │              │
    │           └──────┬───────┘            └──────▲───────┘              │
    │                  │ Connection                │ add/remove/broadcast │
    │                  ▼                           │                      │
    │           ┌──────────────┐                   │                      │
    │           │   Session    │ ──────────────────┘                      │
    │           │ (own thread) │                                          │
    │           └──────────────┘                                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    1. start()    bind + listen, acceptor thread begins accepting
    2. accept     each Connection gets a Session on a new daemon thread
    3. run()      blocks until SIGINT/SIGTERM, Ctrl+C or shutdown()
    4. shutdown() stops accepting; live sessions end with the process

If the listening socket dies on its own, no new connections are accepted
but existing sessions keep chatting until they disconnect.

=============================================================================
"""

import logging
import threading
from typing import Optional

from .config import ChatConfig
from .core import SocketServer, Connection
from .registry import Registry
from .session import Session


logger = logging.getLogger(__name__)


class ChatServer:
    """
    Line-based group chat server.

    Usage:
        server = ChatServer(ChatConfig(port=9999))
        server.run()          # blocks

    or, embedded / in tests:

        server.start()
        host, port = server.address
        ...
        server.shutdown()
    """

    def __init__(self, config: Optional[ChatConfig] = None, registry: Optional[Registry] = None):
        self.config = config or ChatConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.registry = registry or Registry()
        self._socket_server = SocketServer(self.config)

        self._acceptor: Optional[threading.Thread] = None
        self._shutdown_requested = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        return self._socket_server.address

    @property
    def is_accepting(self) -> bool:
        return self._acceptor is not None and self._acceptor.is_alive()

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def start(self):
        """
        Bind and start accepting on a background thread. Returns at once.

        Raises:
            OSError: The listening socket could not be bound.
        """
        self._shutdown_requested.clear()
        self._socket_server.bind()
        self._acceptor = self._socket_server.start(self._handle_connection)

    def run(self):
        """
        Start the server and block until shutdown is requested.

        On the main thread, SIGINT and SIGTERM request a graceful shutdown.
        """
        self._setup_logging()
        self.start()

        on_main_thread = threading.current_thread() is threading.main_thread()
        if on_main_thread:
            self._socket_server.install_signal_handlers(self.request_shutdown)

        try:
            self._wait()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            if on_main_thread:
                self._socket_server.restore_signal_handlers()
            self.shutdown()

    def _wait(self):
        reported = False
        while not self._shutdown_requested.wait(0.5):
            if self.is_accepting:
                continue
            if not reported:
                logger.error(
                    f"Listener is down; serving {len(self.registry)} existing session(s) "
                    "until they disconnect"
                )
                reported = True
            if len(self.registry) == 0:
                break

    def request_shutdown(self):
        """Ask run() to return. Safe from signal handlers; does not block."""
        self._shutdown_requested.set()
        self._socket_server.shutdown()

    def shutdown(self, timeout: Optional[float] = None):
        """
        Stop accepting new connections. Idempotent.

        Args:
            timeout: How long to wait for the acceptor thread to exit.
        """
        self.request_shutdown()
        if self._acceptor is not None and self._acceptor is not threading.current_thread():
            self._acceptor.join(timeout)
        logger.info("Chat server stopped")

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("linechat").setLevel(level)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Called on the acceptor thread for every accepted connection.

        Spawns one daemon thread per session; the number of sessions is
        bounded only by OS resources.
        """
        session = Session(
            conn,
            self.registry,
            announce_departures=self.config.announce_departures,
        )
        thread = threading.Thread(
            target=session.run,
            name=f"session-{conn.id}",
            daemon=True,
        )
        thread.start()
