"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Generator, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from linechat import ChatServer, ChatConfig, Connection


# Upper bound for anything a test waits on
WAIT = 5.0


def wait_until(predicate: Callable[[], bool], timeout: float = WAIT) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def config() -> ChatConfig:
    """Test configuration: OS-assigned port, fast accept polling."""
    return ChatConfig(
        host="127.0.0.1",
        port=0,
        accept_poll_interval=0.05,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port_address(free_port: int) -> tuple[str, int]:
    """An address nothing is listening on."""
    return ("127.0.0.1", free_port)


@pytest.fixture
def socket_pair() -> Generator[tuple[socket.socket, socket.socket], None, None]:
    """Two connected sockets; the first is wrapped by tests, the second is the peer."""
    left, right = socket.socketpair()
    right.settimeout(WAIT)
    yield left, right
    for sock in (left, right):
        try:
            sock.close()
        except OSError:
            pass


@pytest.fixture
def connection_pair(socket_pair) -> Generator[tuple[Connection, socket.socket], None, None]:
    """A Connection over one end of a socketpair, plus the raw peer socket."""
    local, peer = socket_pair
    conn = Connection(socket=local, address=("local", 0))
    yield conn, peer
    conn.close()


class LineClient:
    """Minimal blocking test client speaking the line protocol."""

    def __init__(self, address: tuple[str, int]):
        self.sock = socket.create_connection(address, timeout=WAIT)
        self._buffer = b""

    def send(self, line: str):
        self.sock.sendall(line.encode("utf-8") + b"\n")

    def recv(self, timeout: float = WAIT) -> Optional[str]:
        """
        Next line without its newline, or None at end of stream.

        Raises socket.timeout if nothing complete arrives in time.
        """
        self.sock.settimeout(timeout)
        while b"\n" not in self._buffer:
            try:
                chunk = self.sock.recv(4096)
            except ConnectionResetError:
                chunk = b""
            if not chunk:
                return None
            self._buffer += chunk
        line, _, self._buffer = self._buffer.partition(b"\n")
        return line.decode("utf-8")

    def expect_silence(self, duration: float = 0.2) -> bool:
        """True if no line arrives within ``duration`` seconds."""
        try:
            return self.recv(timeout=duration) is None
        except socket.timeout:
            return True

    def close(self):
        try:
            self.sock.close()
        except OSError:
            pass


@pytest.fixture
def running_server(config: ChatConfig) -> Generator[ChatServer, None, None]:
    """A ChatServer accepting on a background thread."""
    server = ChatServer(config)
    server.start()
    yield server
    server.shutdown(timeout=WAIT)


@pytest.fixture
def connect(running_server: ChatServer) -> Generator[Callable[..., LineClient], None, None]:
    """Factory for LineClients; optionally performs the handshake and waits for registration."""
    clients = []

    def _connect(username: str = None) -> LineClient:
        client = LineClient(running_server.address)
        clients.append(client)
        if username is not None:
            expected = len(running_server.registry) + 1
            client.send(username)
            assert wait_until(lambda: len(running_server.registry) == expected)
        return client

    yield _connect

    for client in clients:
        client.close()


@pytest.fixture
def listening_socket() -> Generator[socket.socket, None, None]:
    """A bare listening socket standing in for the server in client tests."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        s.settimeout(WAIT)
        yield s


def run_in_thread(target, *args) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread
