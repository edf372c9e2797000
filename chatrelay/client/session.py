"""Chat session control: one StreamSession per in-flight question.

ChatController owns the process-wide chat state (selected model,
transcript, active session). The active session is only ever replaced
through ``_replace_session()``, which cancels and awaits the previous
read task first, so at most one stream writes into the transcript.

Session lifecycle:
    idle → sending → streaming → completed | blocked | errored | stopped → idle
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from chatrelay.client.transcript import (
    BotMessage,
    Notice,
    NoticeKind,
    Transcript,
    UserMessage,
)
from chatrelay.client.transport import ChatTransport, ChatTransportError
from chatrelay.config import ClientState
from chatrelay.schemas.api import ModelsResponse
from chatrelay.schemas.streaming import EventType, StreamEvent
from chatrelay.sse import SSEDecoder
from chatrelay.thinking import parse_segments

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    """Lifecycle state of a StreamSession."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    ERRORED = "errored"
    STOPPED = "stopped"


_TERMINAL_STATES = {
    SessionState.COMPLETED,
    SessionState.BLOCKED,
    SessionState.ERRORED,
    SessionState.STOPPED,
}

_DEFAULT_BLOCKED = "This request was blocked by the safety policy."
_DEFAULT_ERROR = "The backend reported an error."
_UNEXPECTED_ERROR = "Something went wrong while reading the answer."


@dataclass
class StreamSession:
    """State for one question from submission to its terminal outcome."""

    question: str
    model: str | None
    message: BotMessage
    decoder: SSEDecoder = field(default_factory=SSEDecoder)
    full_text: str = ""
    has_content: bool = False
    has_ended: bool = False
    stopped: bool = False
    state: SessionState = SessionState.SENDING
    task: asyncio.Task[None] | None = None

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL_STATES


class ChatController:
    """Drives questions through the transport into the transcript.

    Args:
        transport: Relay client.
        transcript: Shared transcript (a new one if omitted).
        state_store: Persisted client state for the selected model.
        on_change: Called after every visible change (display refresh).
        tick_interval: Seconds between thinking-timer ticks.
    """

    def __init__(
        self,
        transport: ChatTransport,
        *,
        transcript: Transcript | None = None,
        state_store: ClientState | None = None,
        on_change: Callable[[], None] | None = None,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self.transcript = transcript if transcript is not None else Transcript()
        self._state_store = state_store
        self._on_change = on_change
        self._tick_interval = tick_interval
        self._clock = clock
        self._active: StreamSession | None = None
        self.selected_model: str | None = None
        self.available_models: list[str] = []
        self.input_enabled = True

    @property
    def active(self) -> StreamSession | None:
        return self._active

    @property
    def state(self) -> SessionState:
        if self._active is None:
            return SessionState.IDLE
        return self._active.state

    # ── Models ────────────────────────────────────────────────────

    async def load_models(self) -> ModelsResponse:
        """Fetch models and restore the persisted choice if still offered."""
        models = await self._transport.fetch_models()
        self.available_models = models.identifiers()

        saved = self._state_store.load_model() if self._state_store else None
        if saved and saved in self.available_models:
            self.selected_model = saved
        elif models.default_model:
            self.selected_model = models.default_model
        elif self.available_models:
            self.selected_model = self.available_models[0]
        return models

    async def select_model(self, model: str) -> None:
        """Switch model; cancels any in-flight answer first."""
        if self.available_models and model not in self.available_models:
            raise ValueError(f"Unknown model: {model}")
        await self._replace_session(None)
        self.selected_model = model
        if self._state_store is not None:
            self._state_store.save_model(model)
        logger.info("Selected model %s", model)

    async def reset(self) -> None:
        """Clear the transcript after cancelling any in-flight answer."""
        await self._replace_session(None)
        self.transcript.clear()
        self._changed()

    # ── Asking ────────────────────────────────────────────────────

    async def ask(self, question: str) -> StreamSession | None:
        """Send a question and stream the answer into the transcript.

        Returns the finished session, or None for a blank question. The
        session always ends in a terminal state with its timers released,
        including when the caller cancels or an unexpected error escapes
        (that error is shown as a notice and re-raised).
        """
        question = question.strip()
        if not question:
            return None

        await self._replace_session(None)

        self.transcript.append(UserMessage(question))
        message = BotMessage(
            on_change=self._on_change,
            tick_interval=self._tick_interval,
            clock=self._clock,
        )
        self.transcript.append(message)
        session = StreamSession(question=question, model=self.selected_model, message=message)

        self.input_enabled = False
        await self._replace_session(session)
        session.task = asyncio.create_task(self._consume(session), name="answer-stream")
        self._changed()

        try:
            await session.task
        except asyncio.CancelledError:
            # From stop() or from the caller; the partial answer is kept
            self._finalize(session, SessionState.STOPPED)
            if not session.stopped:
                raise
        except Exception:
            logger.exception("Answer stream failed unexpectedly")
            if not session.finished:
                self._discard(
                    session, NoticeKind.ERROR, _UNEXPECTED_ERROR, SessionState.ERRORED,
                )
            raise
        finally:
            if self._active is session:
                self._active = None
            if self._active is None:
                self.input_enabled = True
            self._changed()
        return session

    def stop(self) -> bool:
        """Stop the in-flight answer, keeping what has arrived so far.

        Returns False if nothing is streaming.
        """
        session = self._active
        if session is None or session.finished or session.task is None:
            return False
        session.stopped = True
        session.task.cancel()
        logger.debug("Stop requested for %r", session.question)
        return True

    # ── Internals ─────────────────────────────────────────────────

    async def _replace_session(self, session: StreamSession | None) -> None:
        """Cancel the active read task, wait for it to settle, then swap."""
        previous = self._active
        if previous is not None and previous is not session:
            if previous.task is not None and not previous.task.done():
                previous.stopped = True
                previous.task.cancel()
                await asyncio.wait([previous.task])
            if not previous.finished:
                self._finalize(previous, SessionState.STOPPED)
        self._active = session

    async def _consume(self, session: StreamSession) -> None:
        """Read the answer stream; runs as the session's cancellable task."""
        try:
            async with self._transport.stream_question(
                session.question, session.model,
            ) as chunks:
                self._set_state(session, SessionState.STREAMING)
                async for chunk in chunks:
                    for event in session.decoder.feed(chunk):
                        if self._handle_event(session, event):
                            return
                for event in session.decoder.flush():
                    if self._handle_event(session, event):
                        return
        except ChatTransportError as e:
            logger.warning("Answer stream failed: %s", e.message)
            self._discard(session, NoticeKind.ERROR, e.message, SessionState.ERRORED)
            return

        # Source closed without an end event
        self._finalize(session, SessionState.COMPLETED)

    def _handle_event(self, session: StreamSession, event: StreamEvent) -> bool:
        """Apply one event; returns True when the session reached a terminal state."""
        message = session.message

        if event.type == EventType.TOKEN:
            session.full_text += event.content or ""
            if event.content:
                session.has_content = True
            message.update(parse_segments(session.full_text))

        elif event.type == EventType.STATUS:
            message.set_status(event.content or "")

        elif event.type == EventType.TOOL_CALL:
            message.set_status(f"Using tool: {event.tool}")

        elif event.type == EventType.BLOCKED:
            self._discard(
                session, NoticeKind.BLOCKED,
                event.content or _DEFAULT_BLOCKED, SessionState.BLOCKED,
            )
            return True

        elif event.type == EventType.ERROR:
            self._discard(
                session, NoticeKind.ERROR,
                event.content or _DEFAULT_ERROR, SessionState.ERRORED,
            )
            return True

        elif event.type == EventType.END:
            session.has_ended = True
            self._finalize(session, SessionState.COMPLETED)
            return True

        self._changed()
        return False

    def _finalize(self, session: StreamSession, state: SessionState) -> None:
        if session.finished:
            return
        session.message.finalize(parse_segments(session.full_text))
        self._set_state(session, state)

    def _discard(
        self,
        session: StreamSession,
        kind: NoticeKind,
        text: str,
        state: SessionState,
    ) -> None:
        """Replace the in-progress answer with a notice."""
        session.message.teardown()
        self.transcript.remove(session.message)
        self.transcript.append(Notice(kind, text))
        self._set_state(session, state)

    def _set_state(self, session: StreamSession, state: SessionState) -> None:
        logger.debug("Session %r: %s -> %s", session.question, session.state, state)
        session.state = state
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
