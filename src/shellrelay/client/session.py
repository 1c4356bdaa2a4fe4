"""Client side of the shellrelay protocol.

Connects to a command server, sends NUL-terminated commands and streams
each framed response to an output stream as it arrives.
"""

from __future__ import annotations

import codecs
import logging
import socket
import sys
from typing import Callable, TextIO

from shellrelay.protocol.framing import (
    DEFAULT_RESPONSE_CHUNK,
    SENTINEL,
    encode_message,
    read_message,
)

logger = logging.getLogger(__name__)

EXIT_COMMAND = "exit"
DEFAULT_PROMPT = "$ "


class ConnectionFailedError(Exception):
    """Raised when no resolved address of the server accepts a connection."""

    def __init__(self, message: str, host: str = "", port: int = 0) -> None:
        super().__init__(message)
        self.host = host
        self.port = port


def connect(host: str, port: int) -> socket.socket:
    """Connect to the first reachable candidate address for host:port.

    Every address returned by name resolution is tried once, in order.

    Raises:
        ConnectionFailedError: If resolution fails or no candidate connects.
    """
    try:
        candidates = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ConnectionFailedError(
            f"Failed in getaddrinfo(). {e}", host=host, port=port
        ) from e

    logger.info("Connecting to %s:%d ...", host, port)
    for attempt, (family, socktype, proto, _, address) in enumerate(candidates, start=1):
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError:
            continue
        try:
            sock.connect(address)
        except OSError as e:
            logger.info("Attempt %d ... Failed (%s)", attempt, e)
            sock.close()
            continue
        logger.info("Attempt %d ... Success", attempt)
        return sock

    raise ConnectionFailedError(f"Could not connect to {host}:{port}", host=host, port=port)


class ClientSession:
    """A connected session to a command server.

    Usage::

        with ClientSession(connect("127.0.0.1", 8888)) as session:
            output = session.execute("echo hello")
    """

    def __init__(
        self,
        sock: socket.socket,
        output: TextIO | None = None,
        chunk_size: int = DEFAULT_RESPONSE_CHUNK,
    ) -> None:
        self._sock = sock
        self._output = output if output is not None else sys.stdout
        self._chunk_size = chunk_size
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def execute(self, command: str) -> bytes:
        """Send one command and block until its full response has arrived.

        Each received chunk is echoed to the output stream immediately.

        Returns:
            The response payload without the trailing sentinel.

        Raises:
            OSError: If sending or receiving fails.
        """
        self._sock.sendall(encode_message(command))

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        def echo(chunk: bytes) -> None:
            text = decoder.decode(chunk[:-1] if chunk.endswith(SENTINEL) else chunk)
            if text:
                self._output.write(text)
                self._output.flush()

        response = read_message(self._sock.recv, self._chunk_size, on_chunk=echo)
        tail = decoder.decode(b"", final=True)
        if tail:
            self._output.write(tail)
            self._output.flush()
        logger.info("Received response from server of %d bytes", len(response))
        return response

    def run_once(self, command: str) -> bytes:
        """Non-interactive mode: run exactly one command."""
        return self.execute(command)

    def run_interactive(
        self,
        read_line: Callable[[str], str] = input,
        prompt: str = DEFAULT_PROMPT,
    ) -> int:
        """Prompt for commands until ``exit`` or end of input.

        Returns:
            The number of commands sent to the server.
        """
        sent = 0
        while True:
            try:
                command = read_line(prompt)
            except EOFError:
                break
            if command == EXIT_COMMAND:
                break
            self.execute(command)
            sent += 1
        return sent

    def close(self) -> None:
        """Shut the connection down in both directions and close it."""
        if self._closed:
            return
        logger.info("Shutting down client...")
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()
        self._closed = True

    def __enter__(self) -> ClientSession:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()
