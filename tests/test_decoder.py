"""Tests for the incremental event-stream decoder."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from streams import DONE, FakeBody, content_record, data_record
from mistralstream.decoder import StreamDecoder, decode_stream
from mistralstream.errors import ChunkDecodeError, ProtocolError, StreamCancelled


async def collect(chunks, cancel=None) -> list[str]:
    return [token async for token in decode_stream(chunks, cancel)]


def _split(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


@pytest.mark.asyncio
async def test_two_records_then_done():
    body = FakeBody(
        [
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
            b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
            b"data: [DONE]\n\n"
        ]
    )
    assert await collect(body) == ["Hel", "lo"]
    assert body.closed


@pytest.mark.asyncio
async def test_tokens_do_not_depend_on_chunk_boundaries():
    stream = (
        content_record("héllo")
        + content_record(" wörld ✓")
        + content_record("🙂")
        + data_record({"choices": [{"delta": {"role": "assistant"}}]})
        + DONE
    )
    expected = await collect(FakeBody([stream]))
    assert expected == ["héllo", " wörld ✓", "🙂", ""]

    for cut in range(1, len(stream)):
        assert await collect(FakeBody([stream[:cut], stream[cut:]])) == expected
    for size in (1, 2, 3, 7):
        assert await collect(FakeBody(_split(stream, size))) == expected


@pytest.mark.asyncio
async def test_nothing_is_read_after_done():
    body = FakeBody(
        [
            content_record("a") + DONE + content_record("ignored"),
            content_record("b"),
            b"not even a record\n\n",
        ]
    )
    assert await collect(body) == ["a"]
    assert body.reads == 1
    assert body.closed


@pytest.mark.asyncio
async def test_done_as_field_value_ends_stream():
    body = FakeBody([content_record("x") + b"data:[DONE]\n\n" + content_record("y")])
    assert await collect(body) == ["x"]


@pytest.mark.asyncio
async def test_done_with_surrounding_whitespace():
    body = FakeBody([content_record("x") + b"data: [DONE]  \n\n", b"junk\n\n"])
    assert await collect(body) == ["x"]


@pytest.mark.asyncio
async def test_only_first_choice_is_used():
    body = FakeBody(
        [
            data_record(
                {
                    "choices": [
                        {"index": 0, "delta": {"content": "first"}},
                        {"index": 1, "delta": {"content": "second"}},
                    ]
                }
            ),
            DONE,
        ]
    )
    assert await collect(body) == ["first"]


@pytest.mark.asyncio
async def test_missing_content_yields_empty_token():
    body = FakeBody(
        [
            data_record({"choices": [{"delta": {"role": "assistant"}}]}),
            data_record({"choices": [{"delta": {}, "finish_reason": "stop"}]}),
            DONE,
        ]
    )
    assert await collect(body) == ["", ""]


@pytest.mark.asyncio
async def test_full_chunk_shape_is_accepted():
    record = data_record(
        {
            "id": "cmpl-1",
            "object": "chat.completion.chunk",
            "created": 1702256327,
            "model": "mistral-tiny",
            "choices": [
                {"index": 0, "delta": {"role": None, "content": "ok"}, "finish_reason": None}
            ],
        }
    )
    assert await collect(FakeBody([record, DONE])) == ["ok"]


@pytest.mark.asyncio
async def test_unread_fields_are_not_validated():
    body = FakeBody(
        [
            data_record(
                {
                    "id": 1,
                    "created": "yesterday",
                    "choices": [
                        {"index": None, "delta": {"role": "tool", "content": "x"}}
                    ],
                }
            ),
            DONE,
        ]
    )
    assert await collect(body) == ["x"]


@pytest.mark.asyncio
async def test_missing_prefix_is_a_protocol_error():
    body = FakeBody([content_record("a") + b"event: ping\n\n" + content_record("b")])
    tokens = []
    with pytest.raises(ProtocolError) as info:
        async for token in decode_stream(body):
            tokens.append(token)
    assert tokens == ["a"]
    assert info.value.record == "event: ping\n"
    assert body.closed


@pytest.mark.asyncio
async def test_prefix_is_case_sensitive():
    with pytest.raises(ProtocolError):
        await collect(FakeBody([b'DATA: {"choices":[{"delta":{}}]}\n\n']))


@pytest.mark.asyncio
async def test_malformed_json_is_fatal():
    body = FakeBody([content_record("a"), b"data: {not json\n\n", content_record("b")])
    tokens = []
    with pytest.raises(ChunkDecodeError) as info:
        async for token in decode_stream(body):
            tokens.append(token)
    assert tokens == ["a"]
    assert info.value.record == "data: {not json\n"
    assert isinstance(info.value.__cause__, ValidationError)
    assert body.closed


@pytest.mark.asyncio
async def test_empty_choices_is_a_decode_error():
    with pytest.raises(ChunkDecodeError):
        await collect(FakeBody([data_record({"choices": []})]))


@pytest.mark.asyncio
async def test_blank_line_inside_payload_splits_the_record():
    body = FakeBody([b'data: {"choices":\n\n[{"delta":{"content":"x"}}]}\n\n'])
    with pytest.raises(ChunkDecodeError):
        await collect(body)


@pytest.mark.asyncio
async def test_empty_chunks_are_not_end_of_stream():
    body = FakeBody([b"", content_record("a"), b"", b"", content_record("b"), DONE])
    assert await collect(body) == ["a", "b"]


@pytest.mark.asyncio
async def test_exhausted_producer_ends_stream_and_drops_partial_record():
    body = FakeBody([content_record("a"), b'data: {"choices":[{"del'])
    assert await collect(body) == ["a"]
    assert body.closed


@pytest.mark.asyncio
async def test_invalid_utf8_is_replaced():
    body = FakeBody([b'data: {"choices":[{"delta":{"content":"a\xffb"}}]}\n\n', DONE])
    assert await collect(body) == ["a\ufffdb"]


@pytest.mark.asyncio
async def test_cancel_after_tokens(cancel):
    body = FakeBody([content_record("1") + content_record("2") + content_record("3"), DONE])
    tokens = []
    with pytest.raises(StreamCancelled):
        async for token in decode_stream(body, cancel):
            tokens.append(token)
            if len(tokens) == 2:
                cancel.set()
    assert tokens == ["1", "2"]
    assert body.closed


@pytest.mark.asyncio
async def test_cancel_interrupts_pending_read(cancel):
    body = FakeBody([content_record("a")], hang=True)
    tokens = []

    async def consume():
        async for token in decode_stream(body, cancel):
            tokens.append(token)
            asyncio.get_running_loop().call_later(0.01, cancel.set)

    with pytest.raises(StreamCancelled):
        await asyncio.wait_for(consume(), timeout=2)
    assert tokens == ["a"]
    assert body.closed


@pytest.mark.asyncio
async def test_cancel_set_before_start(cancel):
    cancel.set()
    body = FakeBody([content_record("a"), DONE])
    with pytest.raises(StreamCancelled):
        await collect(body, cancel)
    assert body.reads == 0
    assert body.closed


@pytest.mark.asyncio
async def test_task_cancellation_closes_producer():
    body = FakeBody([content_record("a")], hang=True)
    started = asyncio.Event()

    async def consume():
        async for _ in decode_stream(body):
            started.set()

    task = asyncio.create_task(consume())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert body.closed


@pytest.mark.asyncio
async def test_abandoned_stream_closes_producer():
    body = FakeBody([content_record("a") + content_record("b"), DONE])
    stream = decode_stream(body)
    assert await stream.__anext__() == "a"
    await stream.aclose()
    assert body.closed


def test_decoder_keeps_partial_text_between_feeds():
    decoder = StreamDecoder()
    assert list(decoder.feed(b'data: {"choices":[{"delta":{"content":"\xc3')) == []
    assert decoder.pending == 'data: {"choices":[{"delta":{"content":"'
    assert list(decoder.feed(b'\xa9"}}]}\n')) == []
    assert list(decoder.feed(b"\n")) == ["é"]
    assert decoder.pending == ""
    assert not decoder.finished


def test_decoder_ignores_input_after_done():
    decoder = StreamDecoder()
    assert list(decoder.feed(DONE + content_record("late"))) == []
    assert decoder.finished
    assert list(decoder.feed(content_record("later"))) == []
