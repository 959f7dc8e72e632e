"""
Unit tests for the server-side Session state machine.
"""

import socket
import threading

import pytest

from conftest import WAIT, wait_until
from linechat.core.connection import Connection, ConnectionState
from linechat.protocol import REJECT_EMPTY_USERNAME
from linechat.registry import Registry
from linechat.session import Session, SessionState


class Peer:
    """The client end of a socketpair, reading whole lines."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.sock.settimeout(WAIT)
        self.reader = sock.makefile("rb")

    def send(self, data: bytes):
        self.sock.sendall(data)

    def read_line(self) -> bytes:
        return self.reader.readline()


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def make_session(registry):
    """Build Sessions over socketpairs; returns (session, peer)."""
    sockets = []

    def _make(announce_departures: bool = True):
        local, remote = socket.socketpair()
        sockets.extend([local, remote])
        conn = Connection(socket=local, address=("local", len(sockets)))
        session = Session(conn, registry, announce_departures=announce_departures)
        return session, Peer(remote)

    yield _make

    for sock in sockets:
        try:
            sock.close()
        except OSError:
            pass


def start(session: Session) -> threading.Thread:
    thread = threading.Thread(target=session.run, daemon=True)
    thread.start()
    return thread


class TestHandshake:
    """HANDSHAKING → ACTIVE / CLOSED."""

    def test_initial_state(self, make_session):
        session, _ = make_session()

        assert session.state == SessionState.CONNECTING
        assert session.username is None

    def test_username_registers_session(self, make_session, registry):
        session, peer = make_session()
        peer.send(b"alice\n")

        assert session.handshake() is True
        assert session.state == SessionState.ACTIVE
        assert session.username == "alice"
        assert session in registry

    def test_username_is_stripped(self, make_session, registry):
        session, peer = make_session()
        peer.send(b"   bob  \r\n")

        assert session.handshake() is True
        assert session.username == "bob"

    @pytest.mark.parametrize("first_line", [b"\n", b"   \n", b"\t \r\n"])
    def test_blank_username_is_rejected(self, make_session, registry, first_line):
        session, peer = make_session()
        peer.send(first_line)

        thread = start(session)
        thread.join(timeout=WAIT)

        assert session.state == SessionState.CLOSED
        assert len(registry) == 0
        assert peer.read_line() == REJECT_EMPTY_USERNAME.encode() + b"\n"
        assert peer.read_line() == b""  # exactly one line, then EOF

    def test_absent_username_never_registers(self, make_session, registry):
        session, peer = make_session()
        peer.sock.shutdown(socket.SHUT_WR)

        thread = start(session)
        thread.join(timeout=WAIT)

        assert session.state == SessionState.CLOSED
        assert len(registry) == 0
        assert session.connection.state == ConnectionState.CLOSED

    def test_join_notice_goes_to_others_only(self, make_session, registry):
        alice, alice_peer = make_session()
        alice_peer.send(b"alice\n")
        alice.handshake()

        bob, bob_peer = make_session()
        bob_peer.send(b"bob\n")
        bob.handshake()

        assert alice_peer.read_line() == b"bob has joined the chat\n"
        bob_peer.sock.settimeout(0.2)
        with pytest.raises(socket.timeout):
            bob_peer.sock.recv(1024)


class TestActive:
    """Relaying lines while ACTIVE."""

    def test_line_is_echoed_to_everyone_including_sender(self, make_session, registry):
        alice, alice_peer = make_session()
        bob, bob_peer = make_session()
        alice_peer.send(b"alice\n")
        alice.handshake()
        bob_peer.send(b"bob\n")
        bob.handshake()
        assert alice_peer.read_line() == b"bob has joined the chat\n"

        start(alice)
        alice_peer.send(b"alice: hello\n")

        assert alice_peer.read_line() == b"alice: hello\n"
        assert bob_peer.read_line() == b"alice: hello\n"

    def test_blank_line_ends_session(self, make_session, registry):
        session, peer = make_session()
        peer.send(b"alice\n\n")

        thread = start(session)
        thread.join(timeout=WAIT)

        assert session.state == SessionState.CLOSED
        assert session not in registry

    def test_eof_removes_session(self, make_session, registry):
        session, peer = make_session()
        peer.send(b"alice\n")
        thread = start(session)
        assert wait_until(lambda: session in registry)

        peer.sock.shutdown(socket.SHUT_WR)
        thread.join(timeout=WAIT)

        assert len(registry) == 0
        assert session.connection.state == ConnectionState.CLOSED


class TestTeardown:
    """ACTIVE → CLOSED."""

    def test_close_is_idempotent(self, make_session, registry):
        session, peer = make_session()
        peer.send(b"alice\n")
        session.handshake()

        session.close()
        session.close()

        assert session.state == SessionState.CLOSED
        assert len(registry) == 0

    def test_concurrent_close_calls(self, make_session, registry):
        session, peer = make_session()
        peer.send(b"alice\n")
        session.handshake()

        closers = [threading.Thread(target=session.close) for _ in range(8)]
        for t in closers:
            t.start()
        for t in closers:
            t.join(timeout=WAIT)

        assert session.state == SessionState.CLOSED
        assert len(registry) == 0

    def test_departure_is_announced(self, make_session, registry):
        alice, alice_peer = make_session()
        bob, bob_peer = make_session()
        alice_peer.send(b"alice\n")
        alice.handshake()
        bob_peer.send(b"bob\n")
        bob.handshake()
        assert alice_peer.read_line() == b"bob has joined the chat\n"

        bob.close()

        assert alice_peer.read_line() == b"bob has left the chat\n"

    def test_departure_can_be_silent(self, make_session, registry):
        alice, alice_peer = make_session()
        bob, bob_peer = make_session(announce_departures=False)
        alice_peer.send(b"alice\n")
        alice.handshake()
        bob_peer.send(b"bob\n")
        bob.handshake()
        assert alice_peer.read_line() == b"bob has joined the chat\n"

        bob.close()

        alice_peer.sock.settimeout(0.2)
        with pytest.raises(socket.timeout):
            alice_peer.sock.recv(1024)

    def test_unregistered_session_close_does_not_announce(self, make_session, registry):
        alice, alice_peer = make_session()
        alice_peer.send(b"alice\n")
        alice.handshake()

        lurker, _ = make_session()
        lurker.close()

        alice_peer.sock.settimeout(0.2)
        with pytest.raises(socket.timeout):
            alice_peer.sock.recv(1024)

    def test_broken_recipient_is_cleaned_up(self, make_session, registry):
        alice, alice_peer = make_session(announce_departures=False)
        bob, bob_peer = make_session(announce_departures=False)
        alice_peer.send(b"alice\n")
        bob_peer.send(b"bob\n")
        alice_thread = start(alice)
        assert wait_until(lambda: len(registry) == 1)
        bob_thread = start(bob)
        assert wait_until(lambda: len(registry) == 2)
        assert alice_peer.read_line() == b"bob has joined the chat\n"

        # Bob's client vanishes without a goodbye
        bob_peer.reader.close()
        bob_peer.sock.close()
        alice_peer.send(b"alice: anyone there?\n")

        assert alice_peer.read_line() == b"alice: anyone there?\n"
        bob_thread.join(timeout=WAIT)
        assert bob.state == SessionState.CLOSED
        assert registry.snapshot() == [alice]
        assert alice_thread.is_alive()
