from __future__ import annotations

from mistralstream.client import stream_chat
from mistralstream.decoder import StreamDecoder, decode_stream
from mistralstream.errors import (
    ChunkDecodeError,
    MistralStreamError,
    ProtocolError,
    StreamCancelled,
    StreamFormatError,
    StreamInterrupted,
    TransportError,
)

__version__ = "0.1.0"

__all__ = [
    "ChunkDecodeError",
    "MistralStreamError",
    "ProtocolError",
    "StreamCancelled",
    "StreamDecoder",
    "StreamFormatError",
    "StreamInterrupted",
    "TransportError",
    "decode_stream",
    "stream_chat",
    "__version__",
]
