"""SSE relay proxy between the chat client and the LLM backend.

Requires FastAPI, uvicorn and httpx (installed with chatrelay).
"""

from chatrelay.server.app import SSE_HEADERS, create_app

__all__ = ["SSE_HEADERS", "create_app"]
