"""Wire protocol shared by the shellrelay server and client."""

from shellrelay.protocol.framing import (
    SENTINEL,
    decode_request,
    encode_message,
    read_message,
)

__all__ = ["SENTINEL", "decode_request", "encode_message", "read_message"]
