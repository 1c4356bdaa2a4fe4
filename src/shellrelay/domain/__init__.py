"""Domain models for shellrelay.

Core data structures shared by the server components. All models use
Pydantic v2 for validation.
"""

from shellrelay.domain.models import (
    UNKNOWN_HOST,
    UNKNOWN_SERVICE,
    ConnectionSession,
    ListeningEndpoint,
    describe_peer,
)

__all__ = [
    "UNKNOWN_HOST",
    "UNKNOWN_SERVICE",
    "ConnectionSession",
    "ListeningEndpoint",
    "describe_peer",
]
