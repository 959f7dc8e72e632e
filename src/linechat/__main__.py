"""
=============================================================================
LINECHAT CLI ENTRY POINT
=============================================================================

    # Start a server (localhost:9999)
    python -m linechat server

    # Listen on all interfaces, another port, silent departures
    python -m linechat server --host 0.0.0.0 --port 7000 --quiet-departures

    # Join as a client
    python -m linechat client --host 192.168.1.20 --username alice

Environment variables (CHAT_HOST, CHAT_PORT, ...) provide the defaults;
command-line flags override them.

=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .client import ChatClient
from .config import ChatConfig
from .console import ConsoleUI
from .server import ChatServer


def build_parser(defaults: ChatConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linechat",
        description="Line-based TCP group chat",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"linechat {__version__}",
    )

    modes = parser.add_subparsers(dest="mode", required=True)

    # ─────────────────────────────────────────────────────────────────────
    # SERVER MODE
    # ─────────────────────────────────────────────────────────────────────

    server = modes.add_parser("server", help="Run the chat server")
    server.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})",
    )
    server.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})",
    )
    server.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level.upper()})",
    )
    server.add_argument(
        "--quiet-departures",
        action="store_true",
        help="Do not announce when a participant leaves",
    )

    # ─────────────────────────────────────────────────────────────────────
    # CLIENT MODE
    # ─────────────────────────────────────────────────────────────────────

    client = modes.add_parser("client", help="Join a chat server")
    client.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Server host (default: {defaults.host})",
    )
    client.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Server port (default: {defaults.port})",
    )
    client.add_argument(
        "--username", "-u",
        default=None,
        help="Username (asked interactively when omitted)",
    )

    return parser


def run_server(args, defaults: ChatConfig) -> int:
    config = ChatConfig(
        host=args.host,
        port=args.port,
        backlog=defaults.backlog,
        max_line_length=defaults.max_line_length,
        announce_departures=defaults.announce_departures and not args.quiet_departures,
        log_level=args.log_level,
    )

    try:
        ChatServer(config).run()
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def run_client(args, defaults: ChatConfig) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    ui = ConsoleUI()
    try:
        username = args.username.strip() if args.username else ""
        if username:
            ui.username = username
        else:
            username = ui.ask_username()
    except (EOFError, KeyboardInterrupt):
        return 0

    config = ChatConfig(
        host=args.host,
        port=args.port,
        max_line_length=defaults.max_line_length,
    )
    client = ChatClient(
        username,
        config,
        read_input=ui.read_message,
        display=ui.show,
        status=ui.status,
    )

    try:
        client.connect()
    except OSError as e:
        print(f"Error: could not connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        return 1

    client.run()
    return 0


def main(argv=None) -> int:
    defaults = ChatConfig.from_env()
    args = build_parser(defaults).parse_args(argv)

    if args.mode == "server":
        return run_server(args, defaults)
    return run_client(args, defaults)


def server_main() -> int:
    """Console script: linechat-server."""
    return main(["server", *sys.argv[1:]])


def client_main() -> int:
    """Console script: linechat-client."""
    return main(["client", *sys.argv[1:]])


if __name__ == "__main__":
    sys.exit(main())
