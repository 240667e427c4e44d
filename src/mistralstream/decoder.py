"""Incremental decoding of a chat-completion event stream.

The response body is a sequence of records separated by blank lines::

    data: {"choices":[{"delta":{"content":"Hel"}}]}

    data: {"choices":[{"delta":{"content":"lo"}}]}

    data: [DONE]

Network chunks do not line up with records, so the decoder keeps the text
received since the last record boundary and only looks at a record once the
blank line that ends it has arrived. Boundaries are found on raw characters:
a payload that itself contains a blank line would be cut short.
"""

from __future__ import annotations

import asyncio
import codecs
from typing import AsyncIterable, AsyncIterator, Iterator, Optional

from pydantic import ValidationError

from mistralstream.cancellation import race_cancel, raise_if_cancelled
from mistralstream.errors import ChunkDecodeError, ProtocolError
from mistralstream.types import ChatCompletionChunk

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"
TERMINAL_RECORD = f"{DATA_PREFIX} {DONE_MARKER}"

_END = object()


class StreamDecoder:
    """Owns the framing state of one decode operation.

    Not safe to share between concurrent streams; create one per response.
    """

    def __init__(self) -> None:
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer: list[str] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        """True once the terminal marker has been seen."""
        return self._finished

    @property
    def pending(self) -> str:
        """Text received since the last completed record."""
        return "".join(self._buffer)

    def feed(self, data: bytes) -> Iterator[str]:
        """Yield the token of every record completed by ``data``, in order."""
        if self._finished:
            return
        text = self._text_decoder.decode(data)
        for char in text:
            if char != "\n" or not self._buffer or self._buffer[-1] != "\n":
                self._buffer.append(char)
                continue

            record = "".join(self._buffer)
            self._buffer = []
            token = self._parse_record(record)
            if token is None:
                self._finished = True
                return
            yield token

    def _parse_record(self, record: str) -> Optional[str]:
        if record.strip() == TERMINAL_RECORD:
            return None
        if not record.startswith(DATA_PREFIX):
            raise ProtocolError(record)

        payload = record[len(DATA_PREFIX) :].strip()
        if payload == DONE_MARKER:
            return None
        try:
            chunk = ChatCompletionChunk.model_validate_json(payload)
        except ValidationError as exc:
            raise ChunkDecodeError(record) from exc
        return chunk.token


async def _read_next(chunks: AsyncIterator[bytes]) -> object:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return _END


async def decode_stream(
    chunks: AsyncIterable[bytes], cancel: Optional[asyncio.Event] = None
) -> AsyncIterator[str]:
    """Turn a byte-chunk producer into the stream of completion tokens.

    Ends when the producer is exhausted or the terminal marker arrives.
    Raises ``StreamCancelled`` once ``cancel`` is set, ``ProtocolError`` or
    ``ChunkDecodeError`` on malformed records. The producer is closed on
    every exit path.
    """
    decoder = StreamDecoder()
    iterator = chunks.__aiter__()
    try:
        while not decoder.finished:
            chunk = await race_cancel(_read_next(iterator), cancel)
            if chunk is _END:
                return
            raise_if_cancelled(cancel)
            for token in decoder.feed(chunk):
                yield token
                raise_if_cancelled(cancel)
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
