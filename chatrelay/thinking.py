"""Thinking-segment parser.

Splits the full accumulated answer into ordered response and thinking
segments. The answer carries ``<think>...</think>`` markers inline in
the token stream; they are never separate events. The parser is a pure
function of the text, so it is re-run on the whole answer after every
token and always agrees with a one-shot parse of the same text.
"""

from __future__ import annotations

from chatrelay.schemas.streaming import ParsedAnswer, Segment, SegmentKind

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


def parse_segments(text: str) -> ParsedAnswer:
    """Parse ``text`` into segments.

    Text before an open tag becomes a response segment; text after it up
    to the matching close tag becomes a thinking segment tagged with the
    current round. A missing close tag ends the scan with ``is_thinking``
    set. Zero-length segments are never emitted.

    Args:
        text: The entire answer accumulated so far.

    Returns:
        ParsedAnswer with segments, is_thinking and thinking_count.
    """
    segments: list[Segment] = []
    thinking_count = 0
    is_thinking = False
    pos = 0

    while pos < len(text):
        start = text.find(THINK_OPEN, pos)
        if start == -1:
            segments.append(Segment(kind=SegmentKind.RESPONSE, content=text[pos:]))
            break

        if start > pos:
            segments.append(Segment(kind=SegmentKind.RESPONSE, content=text[pos:start]))

        thinking_count += 1
        body_start = start + len(THINK_OPEN)
        end = text.find(THINK_CLOSE, body_start)

        if end == -1:
            body = text[body_start:]
            is_thinking = True
            pos = len(text)
        else:
            body = text[body_start:end]
            pos = end + len(THINK_CLOSE)

        if body:
            segments.append(
                Segment(kind=SegmentKind.THINKING, content=body, round=thinking_count)
            )

    return ParsedAnswer(
        segments=segments,
        is_thinking=is_thinking,
        thinking_count=thinking_count,
    )

