"""Chat transcript: the ordered list of messages and notices on screen."""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import StrEnum

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.text import Text

from chatrelay.client.formatting import CURSOR, FALLBACK_ANSWER
from chatrelay.client.render import MessageRenderer
from chatrelay.schemas.streaming import ParsedAnswer


class UserMessage:
    """A question as the user typed it."""

    def __init__(self, text: str) -> None:
        self.text = text

    def __rich__(self) -> RenderableType:
        return Panel(
            Text(self.text),
            title="[bold cyan]You[/bold cyan]",
            title_align="right",
            border_style="cyan",
        )


class BotMessage:
    """The in-progress or finished answer to one question."""

    def __init__(
        self,
        *,
        on_change: Callable[[], None] | None = None,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.renderer = MessageRenderer(
            on_change=on_change, tick_interval=tick_interval, clock=clock,
        )
        self.status: str = ""
        self.streaming = True

    def update(self, parsed: ParsedAnswer) -> None:
        self.renderer.update(parsed, streaming=True)

    def set_status(self, status: str) -> None:
        self.status = status

    def finalize(self, parsed: ParsedAnswer) -> None:
        self.streaming = False
        self.status = ""
        self.renderer.finalize(parsed)

    def teardown(self) -> None:
        self.streaming = False
        self.renderer.teardown()

    def toggle(self, round: int) -> bool:
        """Expand or collapse a thinking round; False if there is none."""
        view = self.renderer.thinking_view(round)
        if view is None:
            return False
        view.toggle()
        return True

    def __rich__(self) -> RenderableType:
        parts: list[RenderableType] = []
        if self.streaming and self.status:
            parts.append(Text(self.status, style="dim italic"))

        views = self.renderer.views
        if views:
            parts.extend(views)
        elif self.streaming:
            parts.append(Text.from_markup(CURSOR))
        else:
            parts.append(Text(FALLBACK_ANSWER, style="dim"))

        return Panel(
            Group(*parts),
            title="[bold green]Assistant[/bold green]",
            title_align="left",
            border_style="green",
        )


class NoticeKind(StrEnum):
    """Terminal outcomes that replace the answer with a notice."""

    ERROR = "error"
    BLOCKED = "blocked"


class Notice:
    """A dismissable error or blocked notice."""

    def __init__(self, kind: NoticeKind, message: str) -> None:
        self.kind = kind
        self.message = message
        self.dismissed = False

    def __rich__(self) -> RenderableType:
        if self.kind == NoticeKind.BLOCKED:
            return Text(f"⊘ Blocked: {self.message}", style="bold yellow")
        return Text(f"✗ Error: {self.message}", style="bold red")


Entry = UserMessage | BotMessage | Notice


def _visible(entries: list[Entry]) -> list[Entry]:
    return [e for e in entries if not (isinstance(e, Notice) and e.dismissed)]


class Transcript:
    """Process-wide list of transcript entries, oldest first."""

    def __init__(self) -> None:
        self._entries: list[Entry] = []

    @property
    def entries(self) -> list[Entry]:
        return _visible(self._entries)

    def __len__(self) -> int:
        return len(self.entries)

    def append(self, entry: Entry) -> Entry:
        self._entries.append(entry)
        return entry

    def remove(self, entry: Entry) -> None:
        if entry in self._entries:
            self._entries.remove(entry)

    def clear(self) -> None:
        for entry in self._entries:
            if isinstance(entry, BotMessage):
                entry.teardown()
        self._entries.clear()

    def notices(self) -> list[Notice]:
        return [e for e in self.entries if isinstance(e, Notice)]

    def dismiss_notices(self) -> int:
        """Dismiss every visible notice and return how many were dismissed."""
        notices = self.notices()
        for notice in notices:
            notice.dismissed = True
        return len(notices)

    def last_bot_message(self) -> BotMessage | None:
        for entry in reversed(self._entries):
            if isinstance(entry, BotMessage):
                return entry
        return None

    def mark(self) -> int:
        """Position of the next entry, for use with ``view()``."""
        return len(self._entries)

    def view(self, start: int = 0) -> TranscriptView:
        """A live renderable of the entries from ``start`` onward."""
        return TranscriptView(self, start)


class TranscriptView:
    """Re-renders a transcript slice each time Rich draws it."""

    def __init__(self, transcript: Transcript, start: int = 0) -> None:
        self._transcript = transcript
        self._start = start

    def __rich__(self) -> RenderableType:
        return Group(*_visible(self._transcript._entries[self._start:]))
