"""Tests for the FastAPI relay server."""

from __future__ import annotations

import gzip
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from chatrelay.schemas.config import ChatConfig
from chatrelay.server import SSE_HEADERS, create_app

BACKEND = "http://backend.test"


def _sse(*events: dict) -> bytes:
    return b"".join(f"data: {json.dumps(e)}\n\n".encode() for e in events)


def _client(handler, **config_overrides) -> TestClient:
    config = ChatConfig(backend_url=BACKEND, **config_overrides)
    app = create_app(config, transport=httpx.MockTransport(handler))
    return TestClient(app)


def _sse_response(body: bytes) -> httpx.Response:
    return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})


# ── /api/question (streaming) ──────────────────────────────────────


class TestQuestionStream:
    def test_missing_question(self):
        with _client(lambda r: _sse_response(b"")) as client:
            response = client.get("/api/question")
        assert response.status_code == 400
        assert response.json() == {"error": 'Question parameter "q" is required'}

    def test_empty_question(self):
        with _client(lambda r: _sse_response(b"")) as client:
            response = client.get("/api/question", params={"q": ""})
        assert response.status_code == 400

    def test_relays_stream_verbatim(self):
        body = _sse(
            {"type": "token", "content": "<think>x</think>"},
            {"type": "token", "content": "Hello"},
            {"type": "end"},
        )
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return _sse_response(body)

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi", "model": "llama3"})

        assert response.status_code == 200
        assert response.content == body
        assert response.headers["content-type"].startswith("text/event-stream")
        for name, value in SSE_HEADERS.items():
            if name != "Connection":
                assert response.headers[name] == value

        [upstream] = seen
        assert str(upstream.url).startswith(f"{BACKEND}/question")
        assert upstream.url.params["q"] == "hi"
        assert upstream.url.params["model"] == "llama3"

    def test_model_is_optional(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return _sse_response(_sse({"type": "end"}))

        with _client(handler) as client:
            client.get("/api/question", params={"q": "hi"})

        assert "model" not in seen[0].url.params

    def test_compressed_upstream_is_decoded(self):
        body = _sse({"type": "token", "content": "Hello"}, {"type": "end"})

        def handler(request):
            return httpx.Response(
                200,
                content=gzip.compress(body),
                headers={"content-type": "text/event-stream", "content-encoding": "gzip"},
            )

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi"})

        assert response.status_code == 200
        assert "content-encoding" not in response.headers
        assert response.content == body

    def test_mid_stream_failure_becomes_error_event(self):
        first = _sse({"type": "token", "content": "partial"})

        def handler(request):
            async def body():
                yield first
                raise httpx.ReadError("reset by peer")

            return httpx.Response(200, content=body())

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi"})

        assert response.status_code == 200
        assert response.content.startswith(first)
        assert response.content.endswith(
            b'data: {"type": "error", "content": "Stream interrupted"}\n\n'
        )


class TestQuestionErrors:
    def test_backend_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi"})

        assert response.status_code == 503
        assert response.json() == {"error": "Cannot connect to backend. Is it running?"}

    def test_backend_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi"})

        assert response.status_code == 504

    def test_backend_error_status_is_relayed(self):
        def handler(request):
            return httpx.Response(422, json={"detail": "Unknown model"})

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi"})

        assert response.status_code == 422
        assert response.json() == {"error": "Unknown model"}

    def test_backend_error_without_detail(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi"})

        assert response.status_code == 500
        assert response.json() == {"error": "Error from backend"}


# ── /api/question?stream=false ─────────────────────────────────────


class TestQuestionJson:
    def test_collects_tokens(self):
        body = _sse(
            {"type": "status", "content": "Thinking"},
            {"type": "token", "content": "Hel"},
            {"type": "token", "content": "lo"},
            {"type": "end"},
        )
        with _client(lambda r: _sse_response(body)) as client:
            response = client.get("/api/question", params={"q": "hi", "stream": "false"})

        assert response.status_code == 200
        assert response.json() == {"answer": "Hello"}

    def test_relays_json_answer(self):
        def handler(request):
            return httpx.Response(200, json={"answer": "42"})

        with _client(handler) as client:
            response = client.get("/api/question", params={"q": "hi", "stream": "false"})

        assert response.json() == {"answer": "42"}

    def test_blocked(self):
        body = _sse({"type": "token", "content": "a"}, {"type": "blocked", "content": "Nope"})
        with _client(lambda r: _sse_response(body)) as client:
            response = client.get("/api/question", params={"q": "hi", "stream": "false"})

        assert response.status_code == 403
        assert response.json() == {"error": "Nope"}

    def test_error_event(self):
        body = _sse({"type": "error", "content": "Model crashed"})
        with _client(lambda r: _sse_response(body)) as client:
            response = client.get("/api/question", params={"q": "hi", "stream": "false"})

        assert response.status_code == 502
        assert response.json() == {"error": "Model crashed"}

    def test_stream_without_end(self):
        body = _sse({"type": "token", "content": "abc"})
        with _client(lambda r: _sse_response(body)) as client:
            response = client.get("/api/question", params={"q": "hi", "stream": "false"})

        assert response.json() == {"answer": "abc"}


# ── /api/models and /health ────────────────────────────────────────


class TestModelsAndHealth:
    def test_models_relayed(self):
        payload = {"models": [{"identifier": "a"}, {"identifier": "b"}], "default_model": "a"}
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=payload)

        with _client(handler) as client:
            response = client.get("/api/models")

        assert response.status_code == 200
        assert response.json() == payload
        assert seen[0].url.path == "/models"

    def test_malformed_models(self):
        def handler(request):
            return httpx.Response(200, json={"models": "nope"})

        with _client(handler) as client:
            response = client.get("/api/models")

        assert response.status_code == 502

    def test_models_backend_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            response = client.get("/api/models")

        assert response.status_code == 503

    def test_health(self):
        with _client(lambda r: httpx.Response(500)) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "fastapi_url": BACKEND}


class TestStaticFiles:
    def test_serves_static_dir(self, tmp_path):
        (tmp_path / "index.html").write_text("<h1>chat</h1>", encoding="utf-8")
        with _client(lambda r: httpx.Response(500), static_dir=str(tmp_path)) as client:
            index = client.get("/")
            health = client.get("/health")

        assert index.status_code == 200
        assert "<h1>chat</h1>" in index.text
        assert health.json()["status"] == "ok"

    def test_missing_static_dir_is_skipped(self, tmp_path):
        missing = tmp_path / "nope"
        with _client(lambda r: httpx.Response(500), static_dir=str(missing)) as client:
            assert client.get("/").status_code == 404


@pytest.mark.parametrize("path", ["/api/question", "/api/models", "/health"])
def test_routes_registered(path):
    app = create_app(ChatConfig(backend_url=BACKEND), transport=httpx.MockTransport(lambda r: None))
    assert path in {route.path for route in app.routes}
