"""
Wire-level texts and constants shared by the server and the client.

The protocol is plain newline-delimited text over TCP:

    client → server   first line          username
    client → server   every later line    "<username>: <text>"
    server → client   every line          a broadcast, shown as-is

There are no control messages. The server-generated lines below are
ordinary chat lines as far as the client is concerned.
"""

DEFAULT_PORT = 9999
LINE_DELIMITER = b"\n"

REJECT_EMPTY_USERNAME = "Username cannot be empty. Closing connection."


def join_notice(username: str) -> str:
    """Line broadcast to existing members when ``username`` joins."""
    return f"{username} has joined the chat"


def leave_notice(username: str) -> str:
    """Line broadcast to remaining members when ``username`` leaves."""
    return f"{username} has left the chat"


def format_chat_line(username: str, text: str) -> str:
    """Prefix an outbound message with its sender, as the client sends it."""
    return f"{username}: {text}"
