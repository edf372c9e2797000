"""chatrelay schema definitions.

All Pydantic v2 models used by the stream decoder, the renderer,
the relay endpoints and configuration.
"""

from chatrelay.schemas.api import (
    AnswerResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
)
from chatrelay.schemas.config import ChatConfig
from chatrelay.schemas.streaming import (
    EventType,
    ParsedAnswer,
    Segment,
    SegmentKind,
    StreamEvent,
)

__all__ = [
    # API
    "AnswerResponse",
    "ErrorResponse",
    "HealthResponse",
    "ModelInfo",
    "ModelsResponse",
    # Config
    "ChatConfig",
    # Streaming
    "EventType",
    "ParsedAnswer",
    "Segment",
    "SegmentKind",
    "StreamEvent",
]
