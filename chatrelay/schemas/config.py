"""Configuration schema for the relay server and the chat client."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ChatConfig(BaseModel):
    """Runtime configuration shared by ``chatrelay serve`` and the client.

    Loaded from defaults.toml and overridden by environment variables.
    """

    backend_url: str = Field(
        default="http://localhost:8000",
        description="Upstream LLM backend base URL (FASTAPI_URL)",
    )
    host: str = Field(default="0.0.0.0", description="Relay bind address")
    port: int = Field(default=3001, gt=0, lt=65536, description="Relay port (CHAT_UI_PORT)")
    upstream_timeout: float = Field(
        default=120.0, gt=0, description="Timeout in seconds for upstream calls"
    )
    static_dir: str = Field(
        default="", description="Directory served at / (empty = no static files)"
    )
    server_url: str = Field(
        default="http://localhost:3001",
        description="Relay base URL the chat client talks to",
    )
    tick_interval: float = Field(
        default=1.0, gt=0, description="Seconds between thinking-timer ticks"
    )
    log_level: str = Field(default="WARNING", description="Root logging level")
