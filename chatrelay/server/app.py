"""FastAPI relay between the chat client and the LLM backend.

Forwards questions to ``{backend_url}/question`` and pipes the backend's
SSE stream straight through. Upstream failures before the stream starts
become HTTP statuses (503 on connection refusal, the upstream status on
an upstream error); failures after it has started become an in-band
``error`` event, since the status line has already been sent.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from chatrelay.schemas.api import AnswerResponse, ErrorResponse, HealthResponse, ModelsResponse
from chatrelay.schemas.config import ChatConfig
from chatrelay.schemas.streaming import EventType, StreamEvent
from chatrelay.sse import SSEDecoder, encode_event

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_MISSING_QUESTION = 'Question parameter "q" is required'
_CANNOT_CONNECT = "Cannot connect to backend. Is it running?"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        ErrorResponse(error=message).model_dump(), status_code=status_code,
    )


def _upstream_error_detail(response: httpx.Response) -> str:
    """Relay the backend's ``detail`` when it sent one."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if isinstance(detail, str) and detail:
            return detail
    return "Error from backend"


def _transport_failure(exc: httpx.HTTPError) -> JSONResponse:
    """Map a failure to reach the backend onto a relay status."""
    if isinstance(exc, httpx.ConnectError):
        return _error(503, _CANNOT_CONNECT)
    if isinstance(exc, httpx.TimeoutException):
        return _error(504, "Backend timed out")
    return _error(500, "Internal server error")


async def _pipe(response: httpx.Response) -> AsyncIterator[bytes]:
    """Relay decoded upstream bytes; a mid-stream fault becomes an error event.

    Content-Encoding is undone here since the relay sends plain SSE.
    """
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as e:
        logger.error("Stream error: %s", e)
        yield encode_event(StreamEvent(type=EventType.ERROR, content="Stream interrupted"))
    finally:
        await response.aclose()
        logger.info("Stream ended")


async def _collect_answer(response: httpx.Response) -> JSONResponse:
    """Build the non-streaming answer from an upstream response.

    JSON upstream answers are relayed; SSE answers are decoded and their
    tokens concatenated.
    """
    try:
        if "application/json" in response.headers.get("content-type", ""):
            await response.aread()
            try:
                data = response.json()
            except ValueError:
                return _error(502, "Backend returned invalid JSON")
            answer = data.get("answer", "") if isinstance(data, dict) else ""
            return JSONResponse(AnswerResponse(answer=str(answer or "")).model_dump())

        decoder = SSEDecoder()
        parts: list[str] = []
        async for chunk in response.aiter_bytes():
            for event in decoder.feed(chunk):
                outcome = _answer_outcome(event, parts)
                if outcome is not None:
                    return outcome
        for event in decoder.flush():
            outcome = _answer_outcome(event, parts)
            if outcome is not None:
                return outcome
    except httpx.HTTPError as e:
        logger.error("Stream error while collecting answer: %s", e)
        return _error(502, "Stream interrupted")
    finally:
        await response.aclose()

    return JSONResponse(AnswerResponse(answer="".join(parts)).model_dump())


def _answer_outcome(event: StreamEvent, parts: list[str]) -> JSONResponse | None:
    """Fold one event into ``parts``; returns a response once the answer is decided."""
    if event.type == EventType.TOKEN:
        parts.append(event.content or "")
    elif event.type == EventType.BLOCKED:
        return _error(403, event.content or "Request blocked")
    elif event.type == EventType.ERROR:
        return _error(502, event.content or "Error from backend")
    elif event.type == EventType.END:
        return JSONResponse(AnswerResponse(answer="".join(parts)).model_dump())
    return None


def create_app(
    config: ChatConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the relay application.

    Args:
        config: Relay configuration. Defaults to ``load_config()``.
        transport: Optional httpx transport for the upstream client
            (e.g. httpx.MockTransport in tests).
    """
    if config is None:
        from chatrelay.config import load_config

        config = load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.upstream = httpx.AsyncClient(
            base_url=config.backend_url,
            timeout=httpx.Timeout(config.upstream_timeout),
            transport=transport,
        )
        logger.info("Relaying to backend %s", config.backend_url)
        try:
            yield
        finally:
            await app.state.upstream.aclose()

    app = FastAPI(
        title="chatrelay",
        description="SSE relay for the streaming chat client",
        lifespan=lifespan,
    )

    # ── Question ─────────────────────────────────────────────────

    @app.get("/api/question", response_model=None)
    async def question(
        request: Request,
        q: str | None = None,
        model: str | None = None,
        stream: bool = True,
    ) -> StreamingResponse | JSONResponse:
        """Relay a question; SSE by default, JSON ``{answer}`` with stream=false."""
        if not q:
            return _error(400, _MISSING_QUESTION)

        logger.info(
            "Forwarding question to backend (%s): %s",
            "stream" if stream else "json", q,
        )

        params: dict[str, Any] = {"q": q}
        if model:
            params["model"] = model

        upstream: httpx.AsyncClient = request.app.state.upstream
        upstream_request = upstream.build_request("GET", "/question", params=params)
        try:
            response = await upstream.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            logger.error("Error calling backend: %s", e)
            return _transport_failure(e)

        if response.is_error:
            await response.aread()
            await response.aclose()
            logger.error("Backend returned HTTP %d", response.status_code)
            return _error(response.status_code, _upstream_error_detail(response))

        if not stream:
            return await _collect_answer(response)

        return StreamingResponse(
            _pipe(response),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    # ── Models ───────────────────────────────────────────────────

    @app.get("/api/models", response_model=None)
    async def list_models(request: Request) -> JSONResponse:
        """Relay the backend's model list."""
        upstream: httpx.AsyncClient = request.app.state.upstream
        try:
            response = await upstream.get("/models")
        except httpx.HTTPError as e:
            logger.error("Error fetching models: %s", e)
            return _transport_failure(e)

        if response.is_error:
            return _error(response.status_code, _upstream_error_detail(response))

        try:
            models = ModelsResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            logger.exception("Backend returned a malformed model list")
            return _error(502, "Malformed model list from backend")
        return JSONResponse(models.model_dump())

    # ── Health ───────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict:
        return HealthResponse(fastapi_url=config.backend_url).model_dump()

    # ── Static / UI ──────────────────────────────────────────────

    if config.static_dir:
        static_path = Path(config.static_dir)
        if static_path.is_dir():
            app.mount("/", StaticFiles(directory=static_path, html=True), name="static")
        else:
            logger.warning("Static directory %s not found; not serving files", static_path)

    return app
