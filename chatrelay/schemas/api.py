"""Pydantic schemas for the relay's JSON endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ModelInfo(BaseModel):
    """A model the backend can answer with."""

    identifier: str = Field(description="Backend model identifier")


class ModelsResponse(BaseModel):
    """Available models and the backend's default choice."""

    models: list[ModelInfo] = Field(default_factory=list)
    default_model: str = Field(default="", description="Identifier used when none is chosen")

    def identifiers(self) -> list[str]:
        return [m.identifier for m in self.models]


class AnswerResponse(BaseModel):
    """Non-streaming answer body."""

    answer: str


class ErrorResponse(BaseModel):
    """Error body returned with a 4xx/5xx status."""

    error: str


class HealthResponse(BaseModel):
    """Relay liveness and the backend it forwards to."""

    status: str = "ok"
    fastapi_url: str
