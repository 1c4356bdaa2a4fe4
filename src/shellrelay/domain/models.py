"""Core domain models for the shellrelay system.

These models represent the long-lived objects of a server process: the
listening endpoint owned by the admission loop, and the accepted
connection sessions handed to worker processes.
"""

from __future__ import annotations

import socket

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_HOST = "UnknownHost"
UNKNOWN_SERVICE = "UnknownPort"


class ListeningEndpoint(BaseModel):
    """A bound, listening socket plus the address it resolved to."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    sock: socket.socket = Field(description="Listening TCP socket")
    host: str = Field(description="Bound IP address")
    port: int = Field(ge=0, le=65535, description="Bound port (resolved when 0 was requested)")

    def close(self) -> None:
        self.sock.close()


class ConnectionSession(BaseModel):
    """One accepted TCP connection.

    Owned exclusively by a single connection worker, which is the only
    party allowed to close ``sock``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    sock: socket.socket = Field(description="Connected session socket")
    host: str = Field(default=UNKNOWN_HOST, description="Peer host, best effort")
    service: str = Field(default=UNKNOWN_SERVICE, description="Peer port/service, best effort")

    @property
    def peer(self) -> str:
        return f"{self.host}:{self.service}"


def describe_peer(address: tuple) -> tuple[str, str]:
    """Reverse-resolve a peer address into (host, service) strings.

    Lookup failures are not fatal; placeholder values are returned instead.
    """
    try:
        return socket.getnameinfo(address, 0)
    except (OSError, UnicodeError):
        return UNKNOWN_HOST, UNKNOWN_SERVICE
