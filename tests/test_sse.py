"""Tests for the incremental SSE decoder and encoder."""

from __future__ import annotations

import logging

import pytest

from chatrelay.schemas.streaming import EventType, StreamEvent
from chatrelay.sse import SSEDecoder, encode_event, iter_events

TOKEN_THEN_END = (
    b'data: {"type":"token","content":"ab"}\n\n'
    b'data: {"type":"end"}\n\n'
)


def _decode_all(chunks: list[bytes]) -> list[StreamEvent]:
    decoder = SSEDecoder()
    events: list[StreamEvent] = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events


def _wire(events: list[StreamEvent]) -> list[dict]:
    return [e.to_wire() for e in events]


class TestChunking:
    def test_single_chunk(self):
        events = _decode_all([TOKEN_THEN_END])
        assert _wire(events) == [
            {"type": "token", "content": "ab"},
            {"type": "end"},
        ]

    def test_three_arbitrary_chunks(self):
        data = TOKEN_THEN_END
        events = _decode_all([data[:7], data[7:45], data[45:]])
        assert [e.type for e in events] == [EventType.TOKEN, EventType.END]
        assert events[0].content == "ab"

    def test_every_two_way_split_agrees(self):
        expected = _wire(_decode_all([TOKEN_THEN_END]))
        for i in range(len(TOKEN_THEN_END) + 1):
            chunks = [TOKEN_THEN_END[:i], TOKEN_THEN_END[i:]]
            assert _wire(_decode_all(chunks)) == expected, f"split at {i}"

    def test_every_three_way_split_agrees(self):
        data = TOKEN_THEN_END
        expected = _wire(_decode_all([data]))
        for i in range(0, len(data) + 1, 3):
            for j in range(i, len(data) + 1, 5):
                chunks = [data[:i], data[i:j], data[j:]]
                assert _wire(_decode_all(chunks)) == expected, f"split at {i},{j}"

    def test_byte_at_a_time(self):
        events = _decode_all([bytes([b]) for b in TOKEN_THEN_END])
        assert [e.type for e in events] == [EventType.TOKEN, EventType.END]

    def test_multibyte_character_split(self):
        data = 'data: {"type":"token","content":"héllo ▌"}\n\n'.encode()
        expected = _wire(_decode_all([data]))
        for i in range(len(data) + 1):
            assert _wire(_decode_all([data[:i], data[i:]])) == expected
        assert expected[0]["content"] == "héllo ▌"

    def test_crlf_frames(self):
        data = b'data: {"type":"token","content":"x"}\r\n\r\ndata: {"type":"end"}\r\n\r\n'
        for i in range(len(data) + 1):
            events = _decode_all([data[:i], data[i:]])
            assert [e.type for e in events] == [EventType.TOKEN, EventType.END]

    def test_partial_frame_is_held_back(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"type":"token",') == []
        assert decoder.pending == 'data: {"type":"token",'
        events = decoder.feed(b'"content":"hi"}\n\n')
        assert [e.content for e in events] == ["hi"]
        assert decoder.pending == ""


class TestFlush:
    def test_final_frame_without_separator(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"type":"end"}') == []
        events = decoder.flush()
        assert [e.type for e in events] == [EventType.END]

    def test_blank_remainder(self):
        decoder = SSEDecoder()
        decoder.feed(b'data: {"type":"end"}\n\n\n')
        assert decoder.flush() == []

    def test_flush_clears_buffer(self):
        decoder = SSEDecoder()
        decoder.feed(b'data: {"type":"end"}')
        decoder.flush()
        assert decoder.pending == ""
        assert decoder.flush() == []


class TestMalformedLines:
    def test_invalid_json_is_dropped(self, caplog):
        data = b'data: {not json}\n\ndata: {"type":"end"}\n\n'
        with caplog.at_level(logging.WARNING, logger="chatrelay.sse"):
            decoder = SSEDecoder()
            events = decoder.feed(data)
        assert [e.type for e in events] == [EventType.END]
        assert decoder.dropped == 1
        assert "invalid JSON" in caplog.text

    def test_non_object_payload_is_dropped(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: [1, 2]\n\n') == []
        assert decoder.dropped == 1

    def test_missing_required_payload_is_dropped(self):
        decoder = SSEDecoder()
        events = decoder.feed(
            b'data: {"type":"token"}\n\n'
            b'data: {"type":"tool_call"}\n\n'
            b'data: {"type":"token","content":"ok"}\n\n'
        )
        assert [e.content for e in events] == ["ok"]
        assert decoder.dropped == 2

    def test_unknown_type_is_ignored(self):
        decoder = SSEDecoder()
        events = decoder.feed(b'data: {"type":"heartbeat"}\n\ndata: {"type":"end"}\n\n')
        assert [e.type for e in events] == [EventType.END]
        assert decoder.dropped == 0

    def test_unhashable_type_is_dropped(self, caplog):
        data = (
            b'data: {"type":["token"],"content":"x"}\n\n'
            b'data: {"type":{"name":"token"}}\n\n'
            b'data: {"type":"end"}\n\n'
        )
        with caplog.at_level(logging.WARNING, logger="chatrelay.sse"):
            decoder = SSEDecoder()
            events = decoder.feed(data)
        assert [e.type for e in events] == [EventType.END]
        assert decoder.dropped == 2
        assert "type is not a string" in caplog.text

    def test_non_string_type_is_dropped(self):
        decoder = SSEDecoder()
        events = decoder.feed(b'data: {"type":7}\n\ndata: {"content":"a"}\n\n')
        assert events == []
        assert decoder.dropped == 2

    def test_non_string_content_is_dropped(self):
        decoder = SSEDecoder()
        events = decoder.feed(
            b'data: {"type":"token","content":["a"]}\n\n'
            b'data: {"type":"token","content":"b"}\n\n'
        )
        assert [e.content for e in events] == ["b"]
        assert decoder.dropped == 1

    def test_non_data_lines_are_ignored(self):
        decoder = SSEDecoder()
        events = decoder.feed(
            b': keep-alive\n\n'
            b'event: message\ndata: {"type":"status","content":"Searching"}\n\n'
        )
        assert len(events) == 1
        assert events[0].type == EventType.STATUS
        assert events[0].content == "Searching"

    def test_multiple_data_lines_in_one_frame(self):
        decoder = SSEDecoder()
        events = decoder.feed(
            b'data: {"type":"token","content":"a"}\n'
            b'data: {"type":"token","content":"b"}\n\n'
        )
        assert [e.content for e in events] == ["a", "b"]

    def test_empty_token_content_is_valid(self):
        decoder = SSEDecoder()
        events = decoder.feed(b'data: {"type":"token","content":""}\n\n')
        assert len(events) == 1
        assert events[0].content == ""


class TestEncode:
    def test_encode_token(self):
        event = StreamEvent(type=EventType.TOKEN, content="hi")
        assert encode_event(event) == b'data: {"type": "token", "content": "hi"}\n\n'

    def test_encode_omits_absent_fields(self):
        assert encode_event(StreamEvent(type=EventType.END)) == b'data: {"type": "end"}\n\n'

    def test_encoded_events_decode(self):
        events = [
            StreamEvent(type=EventType.STATUS, content="Thinking"),
            StreamEvent(type=EventType.TOOL_CALL, tool="search"),
            StreamEvent(type=EventType.TOKEN, content="<think>x</think>y"),
            StreamEvent(type=EventType.END),
        ]
        data = b"".join(encode_event(e) for e in events)
        assert _decode_all([data]) == events


class TestIterEvents:
    @pytest.mark.asyncio()
    async def test_iter_events_flushes(self):
        async def chunks():
            yield b'data: {"type":"token","content":"a'
            yield b'b"}\n\ndata: {"type":"end"}'

        events = [e async for e in iter_events(chunks())]
        assert [e.type for e in events] == [EventType.TOKEN, EventType.END]
        assert events[0].content == "ab"
