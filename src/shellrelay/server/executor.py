"""Runs a command in the system shell and captures its standard output."""

from __future__ import annotations

import logging
import subprocess

logger = logging.getLogger(__name__)


class CommandExecutionError(Exception):
    """Raised when a command cannot be started."""


def run_command(command: str) -> bytes:
    """Run ``command`` through ``/bin/sh`` and return everything it wrote to stdout.

    The exit status of the command is not an error: a failing command
    simply produces whatever output it produced. Standard error is not
    captured and goes to the server's own stderr.

    Raises:
        CommandExecutionError: If the shell itself could not be started.
    """
    try:
        completed = subprocess.run(
            command,
            shell=True,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            check=False,
        )
    except (OSError, ValueError) as e:
        raise CommandExecutionError(f"Failed to run {command!r}: {e}") from e
    logger.debug(
        "Command %r exited with %d (%d bytes of output)",
        command, completed.returncode, len(completed.stdout),
    )
    return completed.stdout
