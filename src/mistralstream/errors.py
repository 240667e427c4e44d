from __future__ import annotations

import json
from typing import Any, Optional


class MistralStreamError(Exception):
    """Base class for every error raised by mistralstream."""


class TransportError(MistralStreamError):
    """The server rejected the request, or could not be reached at all.

    ``status_code`` is ``None`` when no HTTP response was received.
    """

    def __init__(
        self,
        status_code: Optional[int],
        body: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        if message is None and status_code is None:
            message = "Mistral API request failed before a response was received"
        elif message is None:
            message = f"Mistral API error, status: {status_code}"
        super().__init__(message)

    @property
    def payload(self) -> Optional[Any]:
        """The response body parsed as JSON, or ``None``."""
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError:
            return None


class StreamInterrupted(TransportError):
    """The connection failed after the response had started streaming."""

    def __init__(self, status_code: int) -> None:
        super().__init__(
            status_code, message=f"Mistral API stream interrupted, status: {status_code}"
        )


class StreamFormatError(MistralStreamError):
    """The server sent data that does not follow the event-stream format."""

    def __init__(self, message: str, record: str) -> None:
        self.record = record
        super().__init__(message)


class ProtocolError(StreamFormatError):
    def __init__(self, record: str) -> None:
        super().__init__(f"Invalid chunk line encountered: {record!r}", record)


class ChunkDecodeError(StreamFormatError):
    def __init__(self, record: str) -> None:
        super().__init__(f"Could not decode chunk payload: {record!r}", record)


class StreamCancelled(MistralStreamError):
    """The caller fired the cancellation signal."""

    def __init__(self) -> None:
        super().__init__("Stream cancelled")
