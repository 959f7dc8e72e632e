"""
=============================================================================
CORE NETWORKING COMPONENTS
=============================================================================

The low-level plumbing underneath the chat server and client.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Creates the TCP listening socket, binds, listens                 │
    │  • Runs the accept() loop on a dedicated thread                     │
    │  • Wraps every accepted socket in a Connection                      │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Hands off new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Line framing over the TCP byte stream                            │
    │  • Serialized writes, idempotent close                              │
    │  • Used by server sessions and by the client driver alike           │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState, LineTooLongError

__all__ = [
    "SocketServer",      # TCP listener + accept loop
    "Connection",        # Line-oriented socket wrapper
    "ConnectionState",   # Enum for connection lifecycle states
    "LineTooLongError",  # Peer exceeded the maximum line length
]
