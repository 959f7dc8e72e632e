"""
=============================================================================
LINECHAT - Line-Based TCP Group Chat
=============================================================================

A central server accepts TCP connections, registers each client under the
username sent as its first line, and rebroadcasts every later line to all
connected clients (the sender included).

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   client A ──┐                                      ┌──► client A    │
    │              │     ┌────────────┐   ┌──────────┐    │                │
    │   client B ──┼───► │  Session   │──►│ Registry │────┼──► client B    │
    │              │     │ (1 thread  │   │ broadcast│    │                │
    │   client C ──┘     │ per client)│   └──────────┘    └──► client C    │
    │                    └────────────┘                                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE LAYOUT
=============================================================================

    linechat/
    ├── core/
    │   ├── connection.py     Line-oriented socket wrapper
    │   └── socket_server.py  Listener + accept loop
    ├── registry.py           Shared set of live sessions, broadcast
    ├── session.py            Per-client handshake/relay/teardown
    ├── server.py             ChatServer orchestrator
    ├── client.py             ChatClient dual-channel driver
    ├── console.py            Terminal UI for the client
    ├── protocol.py           Wire texts and constants
    ├── config.py             ChatConfig
    └── __main__.py           python -m linechat server|client

=============================================================================
QUICK START
=============================================================================

    from linechat import ChatServer, ChatConfig

    ChatServer(ChatConfig(host="0.0.0.0", port=9999)).run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ChatConfig
from .core import Connection, ConnectionState, SocketServer
from .registry import Registry
from .session import Session, SessionState
from .server import ChatServer
from .client import ChatClient

__all__ = [
    "__version__",
    "ChatConfig",
    "Connection",
    "ConnectionState",
    "SocketServer",
    "Registry",
    "Session",
    "SessionState",
    "ChatServer",
    "ChatClient",
]
