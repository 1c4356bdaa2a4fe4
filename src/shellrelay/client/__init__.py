"""Command client for shellrelay.

Public API:
    connect -- Open a TCP connection to a command server
    ClientSession -- Send commands and stream their responses
"""

from shellrelay.client.session import ClientSession, ConnectionFailedError, connect

__all__ = ["ClientSession", "ConnectionFailedError", "connect"]
