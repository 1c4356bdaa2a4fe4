"""Sentinel-byte framing for requests and responses.

A message is sent as its raw bytes followed by exactly one NUL byte::

    <payload bytes> 0x00

There is no length prefix. The receiver keeps reading bounded chunks
until the last byte of the most recent chunk is the sentinel, or until
the peer closes the stream. Payloads are assumed to be NUL-free; output
that contains a NUL byte mid-stream is not escaped and may end a message
early on the receiving side.
"""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

SENTINEL = b"\x00"

# Server reads one request per recv() of at most this many bytes
DEFAULT_REQUEST_BUFFER = 512
# Client reads responses in chunks of this many bytes
DEFAULT_RESPONSE_CHUNK = 1024


def encode_message(payload: bytes | str) -> bytes:
    """Frame a payload for the wire by appending the sentinel byte."""
    if isinstance(payload, str):
        payload = payload.encode()
    return payload + SENTINEL


def read_message(
    recv: Callable[[int], bytes],
    chunk_size: int = DEFAULT_RESPONSE_CHUNK,
    on_chunk: Callable[[bytes], None] | None = None,
) -> bytes:
    """Read one framed message from a stream.

    Args:
        recv: Receive function, typically ``sock.recv``. Returning ``b""``
              means the peer closed the stream.
        chunk_size: Maximum bytes requested per call.
        on_chunk: Optional callback invoked with every raw chunk as it
                  arrives, before the sentinel is stripped.

    Returns:
        The message payload without its trailing sentinel. If the stream
        ended before a sentinel was seen, whatever was accumulated.

    Raises:
        OSError: If the underlying receive fails.
    """
    buffer = bytearray()
    while True:
        chunk = recv(chunk_size)
        if not chunk:
            logger.debug("Stream closed after %d bytes without sentinel", len(buffer))
            return bytes(buffer)
        if on_chunk is not None:
            on_chunk(chunk)
        buffer += chunk
        if chunk.endswith(SENTINEL):
            del buffer[-1:]
            return bytes(buffer)


def decode_request(data: bytes) -> str:
    """Interpret the bytes of a single receive as a command string.

    The command ends at the first sentinel, like a C string; anything
    after it in the same read is ignored.
    """
    command, _, _ = data.partition(SENTINEL)
    return command.decode("utf-8", errors="replace")
