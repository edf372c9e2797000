"""HTTP transport from the chat client to the relay.

Wraps an httpx.AsyncClient. Every failure is converted into a
ChatTransportError carrying a short user-facing message and, when the
relay answered, its status code.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from pydantic import ValidationError

from chatrelay.client.formatting import FALLBACK_ANSWER
from chatrelay.schemas.api import HealthResponse, ModelsResponse
from chatrelay.schemas.config import ChatConfig

logger = logging.getLogger(__name__)


class ChatTransportError(Exception):
    """A request to the relay failed (connection, status or stream fault)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _short_error_reason(error: httpx.HTTPError) -> str:
    """Map an httpx exception to a concise description."""
    if isinstance(error, httpx.ConnectError):
        return "Cannot connect to the chat server. Is it running?"
    if isinstance(error, httpx.TimeoutException):
        return "Request timed out"
    if isinstance(error, (httpx.ReadError, httpx.RemoteProtocolError)):
        return "Stream interrupted"
    return str(error)[:80] or error.__class__.__name__


def _error_message(response: httpx.Response) -> str:
    """Pull ``error`` (or ``detail``) out of a JSON error body."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("error") or body.get("detail")
        if isinstance(message, str) and message:
            return message
    return f"Failed to get response (HTTP {response.status_code})"


class ChatTransport:
    """Relay client used by ChatController.

    The underlying httpx.AsyncClient is created lazily so a transport can
    outlive one event loop; ``aclose()`` drops it. Pass ``client`` to use
    a preconfigured client (e.g. one with an httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: ChatConfig) -> ChatTransport:
        return cls(config.server_url, timeout=config.upstream_timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url, timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @asynccontextmanager
    async def stream_question(
        self, question: str, model: str | None = None,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open the SSE answer stream and yield its body as byte chunks.

        Raises:
            ChatTransportError: On connection failure, a non-2xx status, or
                a fault while reading the body.
        """
        params = {"q": question}
        if model:
            params["model"] = model

        client = self._get_client()
        logger.debug("Opening answer stream from %s (model=%s)", self._base_url, model)
        request = client.build_request(
            "GET", "/api/question", params=params,
            headers={"Accept": "text/event-stream"},
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ChatTransportError(_short_error_reason(e)) from e

        try:
            if response.is_error:
                await response.aread()
                raise ChatTransportError(
                    _error_message(response), status_code=response.status_code,
                )
            yield self._iter_body(response)
        finally:
            await response.aclose()

    async def _iter_body(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise ChatTransportError(_short_error_reason(e)) from e

    async def ask(self, question: str, model: str | None = None) -> str:
        """Non-streaming question; returns the full answer text."""
        params = {"q": question, "stream": "false"}
        if model:
            params["model"] = model
        response = await self._get_json("/api/question", params)
        answer = response.get("answer")
        return answer if isinstance(answer, str) and answer else FALLBACK_ANSWER

    async def fetch_models(self) -> ModelsResponse:
        data = await self._get_json("/api/models")
        try:
            return ModelsResponse.model_validate(data)
        except ValidationError as e:
            raise ChatTransportError(f"Malformed model list: {e.error_count()} error(s)") from e

    async def health(self) -> HealthResponse:
        data = await self._get_json("/health")
        try:
            return HealthResponse.model_validate(data)
        except ValidationError as e:
            raise ChatTransportError("Malformed health response") from e

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> dict:
        try:
            response = await self._get_client().get(path, params=params)
        except httpx.HTTPError as e:
            raise ChatTransportError(_short_error_reason(e)) from e
        if response.is_error:
            raise ChatTransportError(
                _error_message(response), status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ChatTransportError("Server returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ChatTransportError("Server returned an unexpected response")
        return data
