"""Streaming schemas for SSE event delivery and answer segmentation.

Defines the StreamEvent model carried by each ``data:`` line of the
relay's event stream, and the Segment / ParsedAnswer models produced
by re-parsing the accumulated answer text.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class EventType(StrEnum):
    """Types of events carried on the answer stream."""

    TOKEN = "token"
    STATUS = "status"
    TOOL_CALL = "tool_call"
    BLOCKED = "blocked"
    ERROR = "error"
    END = "end"


# Event types whose ``content`` field is mandatory
_CONTENT_REQUIRED = {EventType.TOKEN, EventType.STATUS}


class StreamEvent(BaseModel):
    """A single decoded event from the answer stream."""

    type: EventType = Field(description="Event type")
    content: str | None = Field(
        default=None,
        description="Token text, status line, block reason or error message",
    )
    tool: str | None = Field(
        default=None, description="Tool name for tool_call events"
    )

    @model_validator(mode="after")
    def _check_payload(self) -> StreamEvent:
        if self.type in _CONTENT_REQUIRED and self.content is None:
            raise ValueError(f"{self.type} event requires 'content'")
        if self.type == EventType.TOOL_CALL and self.tool is None:
            raise ValueError("tool_call event requires 'tool'")
        return self

    def to_wire(self) -> dict[str, str]:
        """Return the JSON-ready payload, omitting absent fields."""
        return self.model_dump(mode="json", exclude_none=True)


class SegmentKind(StrEnum):
    """Kind of a parsed answer segment."""

    RESPONSE = "response"
    THINKING = "thinking"


class Segment(BaseModel):
    """A contiguous span of the answer, either visible response or thinking."""

    kind: SegmentKind = Field(description="Response or thinking span")
    content: str = Field(description="Span text with the delimiting tags removed")
    round: int | None = Field(
        default=None, ge=1, description="1-based thinking round (thinking only)"
    )


class ParsedAnswer(BaseModel):
    """Result of parsing the full accumulated answer text."""

    segments: list[Segment] = Field(default_factory=list)
    is_thinking: bool = Field(
        default=False,
        description="True if the text ends inside an unterminated thinking span",
    )
    thinking_count: int = Field(
        default=0, ge=0, description="Number of thinking-open tags seen"
    )

    def is_open(self, index: int) -> bool:
        """Whether the segment at ``index`` is a still-unterminated thinking round."""
        if not self.is_thinking or index != len(self.segments) - 1:
            return False
        segment = self.segments[index]
        return (
            segment.kind == SegmentKind.THINKING
            and segment.round == self.thinking_count
        )
