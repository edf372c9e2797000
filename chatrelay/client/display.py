"""Rich Live display for a streaming answer.

Wraps a transcript slice in a Live region that redraws whenever the
controller reports a change, and on its own refresh cadence so the
thinking timers keep counting between tokens.
"""

from __future__ import annotations

import logging

from rich.console import Console, RenderableType
from rich.errors import LiveError, MarkupError
from rich.live import Live

logger = logging.getLogger(__name__)


class ChatDisplay:
    """Context manager around a Rich Live region.

    Usage:
        display = ChatDisplay(console)
        controller = ChatController(transport, on_change=display.refresh)
        with display.showing(transcript.view(transcript.mark())):
            await controller.ask(question)
    """

    def __init__(self, console: Console, *, refresh_per_second: int = 8) -> None:
        self._console = console
        self._refresh_per_second = refresh_per_second
        self._live: Live | None = None
        self._renderable: RenderableType | None = None

    def showing(self, renderable: RenderableType) -> ChatDisplay:
        self._renderable = renderable
        return self

    def __enter__(self) -> ChatDisplay:
        """Start the Live region for the current renderable."""
        self._live = Live(
            self._renderable or "",
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args: object) -> None:
        """Draw the final frame and stop the Live region."""
        if self._live:
            self.refresh()
            self._live.__exit__(*args)
            self._live = None

    def refresh(self) -> None:
        """Redraw now; a no-op outside the ``with`` block."""
        if self._live is None:
            return
        try:
            self._live.refresh()
        except (LiveError, MarkupError):
            logger.debug("Display refresh failed", exc_info=True)
