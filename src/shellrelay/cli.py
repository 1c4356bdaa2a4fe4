"""Command-line interface for shellrelay.

Provides the ``shellrelay`` entry point with ``server`` and ``client``
subcommands, plus the standalone ``shellrelay-server`` and
``shellrelay-client`` scripts that take the subcommand's flags directly.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

logger = logging.getLogger("shellrelay.cli")

SERVER_DESCRIPTION = """\
Start a server that executes a user's shell commands when they connect. The
service can either run non-interactively, closing the connection after the
batch job has completed; or interactively and the user terminates the
connection themselves. Commands run in /bin/sh. The server shuts down once
every connection it accepted has closed."""

CLIENT_DESCRIPTION = """\
Connect to a remote shell server listening on the host and port. The
commands are run in the server's /bin/sh. Without -c the client prompts for
commands until 'exit'."""


def _port(value: str) -> int:
    from shellrelay.config.settings import parse_port

    try:
        return parse_port(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _add_server_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-p", "--port",
        type=_port,
        default=None,
        help="Port to serve on, a decimal integer in 0-65535 (default: 8888)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print status messages",
    )
    parser.add_argument(
        "-h", "-?", "--help",
        action="help",
        help="Show this help message and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/shellrelay.yaml)",
    )


def _add_client_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-h", "--host",
        default=None,
        help="Address of the target server, hostname or IP (default: 127.0.0.1)",
    )
    parser.add_argument(
        "-p", "--port",
        type=_port,
        default=None,
        help="Port the service is running on (default: 8888)",
    )
    parser.add_argument(
        "-c", "--command",
        default=None,
        help="Run a single command non-interactively",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print status messages",
    )
    parser.add_argument(
        "-?", "--help",
        action="help",
        help="Show this help message and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/shellrelay.yaml)",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the ``shellrelay`` entry point."""
    parser = argparse.ArgumentParser(
        prog="shellrelay",
        description="Remote shell command relay over TCP",
    )
    subparsers = parser.add_subparsers(dest="command_name", help="Available commands")

    server_parser = subparsers.add_parser(
        "server", help="Start the command server",
        description=SERVER_DESCRIPTION, add_help=False,
    )
    _add_server_arguments(server_parser)

    client_parser = subparsers.add_parser(
        "client", help="Connect to a command server",
        description=CLIENT_DESCRIPTION, add_help=False,
    )
    _add_client_arguments(client_parser)

    return parser.parse_args(argv)


def _load(args: argparse.Namespace):
    from shellrelay.config.settings import load_settings
    from shellrelay.utils.logging import setup_logging

    # Server status is printed on stdout; the client keeps stdout for
    # command output.
    status_stream = sys.stdout if args.command_name == "server" else sys.stderr
    settings = load_settings(args.config)
    if args.verbose:
        settings.logging.level = "DEBUG"
    setup_logging(settings.logging, status_stream=status_stream)
    return settings


def _run_server(args: argparse.Namespace, settings) -> int:
    from shellrelay.server.admission import ServerStartupError, WorkerSpawnError, run_server

    config = settings.server
    if args.port is not None:
        config.port = args.port

    logger.info("Starting server ...")
    try:
        return run_server(config)
    except ServerStartupError as e:
        logger.error("%s", e)
        return 1
    except WorkerSpawnError as e:
        logger.critical("%s. Aborting.", e)
        return 1


def _run_client(args: argparse.Namespace, settings) -> int:
    from shellrelay.client.session import ClientSession, ConnectionFailedError, connect

    config = settings.client
    host = args.host or config.host
    port = args.port if args.port is not None else config.port

    logger.info("Starting client ...")
    try:
        sock = connect(host, port)
    except ConnectionFailedError as e:
        logger.error("%s", e)
        return 1

    with ClientSession(sock, chunk_size=config.buffer_size) as session:
        try:
            if args.command is not None:
                session.run_once(args.command)
            else:
                session.run_interactive(prompt=config.prompt)
        except OSError as e:
            logger.error("Did not read successfully: %s", e)
            return 1
    return 0


def server_main(argv: list[str] | None = None) -> int:
    """Entry point for ``shellrelay-server``."""
    argv = sys.argv[1:] if argv is None else argv
    return main(["server", *argv])


def client_main(argv: list[str] | None = None) -> int:
    """Entry point for ``shellrelay-client``."""
    argv = sys.argv[1:] if argv is None else argv
    return main(["client", *argv])


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the shellrelay CLI."""
    from shellrelay.config.settings import ConfigurationError
    from shellrelay.utils.logging import setup_logging

    args = parse_args(argv)

    if args.command_name is None:
        parse_args(["--help"])
        return 0

    try:
        settings = _load(args)
    except ConfigurationError as e:
        setup_logging()
        logger.error("%s", e)
        return 1

    if args.command_name == "server":
        return _run_server(args, settings)
    return _run_client(args, settings)


if __name__ == "__main__":
    sys.exit(main())
