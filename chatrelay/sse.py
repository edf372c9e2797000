"""Incremental Server-Sent-Events decoder and encoder.

The decoder consumes raw byte chunks in arrival order, reassembles
``\\n\\n``-separated frames across arbitrary chunk boundaries and
yields typed StreamEvents. Only ``data: `` lines are interpreted;
comments and keep-alives are ignored. Malformed lines are dropped
with a warning and never abort the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

from pydantic import ValidationError

from chatrelay.schemas.streaming import EventType, StreamEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
FRAME_SEPARATOR = "\n\n"

_KNOWN_TYPES = {t.value for t in EventType}


class SSEDecoder:
    """Reassembles SSE frames from byte chunks and parses their data lines.

    Usage:
        decoder = SSEDecoder()
        for chunk in chunks:
            events.extend(decoder.feed(chunk))
        events.extend(decoder.flush())
    """

    def __init__(self) -> None:
        # Holds back a trailing partial multi-byte sequence between chunks
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.dropped: int = 0

    @property
    def pending(self) -> str:
        """Text received but not yet terminated by a frame separator."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Decode a chunk and return the events of every completed frame."""
        self._buffer += self._decoder.decode(chunk)
        self._buffer = self._buffer.replace("\r\n", "\n")

        *frames, self._buffer = self._buffer.split(FRAME_SEPARATOR)

        events: list[StreamEvent] = []
        for frame in frames:
            events.extend(self._parse_frame(frame))
        return events

    def flush(self) -> list[StreamEvent]:
        """Parse whatever remains once the byte source has completed.

        Covers backends that omit the separator after the final frame.
        """
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer.replace("\r\n", "\n"), ""
        if not remainder.strip():
            return []
        return self._parse_frame(remainder)

    def _parse_frame(self, frame: str) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in frame.split("\n"):
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def _parse_line(self, line: str) -> StreamEvent | None:
        """Parse one line; non-data lines and bad payloads yield None."""
        if not line.startswith(DATA_PREFIX):
            return None

        raw = line[len(DATA_PREFIX):]
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            self._drop(raw, "invalid JSON")
            return None

        if not isinstance(payload, dict):
            self._drop(raw, "payload is not an object")
            return None

        event_type = payload.get("type")
        if not isinstance(event_type, str):
            self._drop(raw, "type is not a string")
            return None
        if event_type not in _KNOWN_TYPES:
            logger.debug("Ignoring SSE event of unknown type %r", event_type)
            return None

        try:
            return StreamEvent.model_validate(payload)
        except ValidationError as e:
            self._drop(raw, f"{e.error_count()} validation error(s)")
            return None

    def _drop(self, raw: str, reason: str) -> None:
        self.dropped += 1
        logger.warning("Dropping malformed SSE line (%s): %.200s", reason, raw)


async def iter_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream into events, flushing at the end."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event


def encode_event(event: StreamEvent) -> bytes:
    """Serialize an event as a single ``data:`` frame."""
    return f"{DATA_PREFIX}{json.dumps(event.to_wire())}{FRAME_SEPARATOR}".encode()
