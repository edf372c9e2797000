"""Incremental renderer for streamed answers.

After every token the full answer is re-parsed into segments, and
MessageRenderer reconciles that list against the views it already
owns. Views are only created, torn down or re-bodied when something
actually changed, so timers, collapse state and unchanged bodies
survive across updates.

Reconciliation rules:
- a view list longer than the segment list is truncated to fit;
- if the last view's kind no longer matches the segment at its index
  (a partial ``<think>`` resolved one way or the other), that view is
  torn down and re-created;
- new indices get a ResponseView or a ThinkingView;
- a thinking round that is no longer open is resolved exactly once.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from rich.console import RenderableType
from rich.panel import Panel
from rich.text import Text

from chatrelay.client.formatting import format_message, with_cursor
from chatrelay.client.timers import ElapsedTimer
from chatrelay.schemas.streaming import ParsedAnswer, Segment, SegmentKind

logger = logging.getLogger(__name__)


# ── Segment views ─────────────────────────────────────────────────


class SegmentView:
    """A rendered segment. Owns its body and any timer it starts."""

    kind: SegmentKind

    def __init__(self) -> None:
        self.body: str = ""

    def set_body(self, markup: str) -> bool:
        """Replace the body markup; returns True if it changed."""
        if markup == self.body:
            return False
        self.body = markup
        return True

    def release(self) -> None:
        """Free owned resources before the view is discarded."""

    def __rich__(self) -> RenderableType:
        return Text.from_markup(self.body)


class ResponseView(SegmentView):
    """Plain answer text."""

    kind = SegmentKind.RESPONSE


class ThinkingView(SegmentView):
    """Collapsible reasoning block with a live elapsed-time header."""

    kind = SegmentKind.THINKING

    def __init__(
        self,
        round: int,
        *,
        on_change: Callable[[], None] | None = None,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.round = round
        self.collapsed = False
        self.resolved = False
        self._on_change = on_change
        self.timer = ElapsedTimer(self._tick, interval=tick_interval, clock=clock)
        self.timer.start()

    @property
    def label(self) -> str:
        seconds = self.timer.elapsed
        if self.resolved:
            unit = "second" if seconds == 1 else "seconds"
            return f"Thought for {seconds} {unit}"
        return f"Thinking… {seconds}s"

    def toggle(self) -> None:
        self.collapsed = not self.collapsed

    def resolve(self) -> bool:
        """Stop the timer, freeze the label and collapse.

        Returns False if the view was already resolved.
        """
        if self.resolved:
            return False
        self.timer.stop()
        self.resolved = True
        self.collapsed = True
        return True

    def release(self) -> None:
        self.timer.stop()

    def _tick(self, _seconds: int) -> None:
        if self._on_change is not None:
            self._on_change()

    def __rich__(self) -> RenderableType:
        if self.collapsed:
            return Text(f"▸ {self.label}", style="dim italic")
        return Panel(
            Text.from_markup(self.body, style="dim"),
            title=f"[dim]▾ {self.label}[/dim]",
            title_align="left",
            border_style="dim",
        )


# ── Reconciler ────────────────────────────────────────────────────


class MessageRenderer:
    """Keeps a list of segment views in step with the parsed answer.

    ``mutations`` counts every view creation, removal and body change,
    so repeated updates with an unchanged segment list are observable
    as no-ops.
    """

    def __init__(
        self,
        *,
        on_change: Callable[[], None] | None = None,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._views: list[SegmentView] = []
        self._on_change = on_change
        self._tick_interval = tick_interval
        self._clock = clock
        self.mutations: int = 0

    @property
    def views(self) -> list[SegmentView]:
        return list(self._views)

    def running_timers(self) -> int:
        """Number of thinking views whose timer is still active."""
        return sum(
            1 for v in self._views
            if isinstance(v, ThinkingView) and v.timer.running
        )

    def thinking_view(self, round: int) -> ThinkingView | None:
        for view in self._views:
            if isinstance(view, ThinkingView) and view.round == round:
                return view
        return None

    def update(self, parsed: ParsedAnswer, *, streaming: bool = True) -> None:
        """Reconcile the owned views against ``parsed``."""
        segments = parsed.segments

        if len(self._views) > len(segments):
            self._truncate(len(segments))

        if self._views:
            last = len(self._views) - 1
            if self._views[last].kind != segments[last].kind:
                logger.debug(
                    "Segment %d changed kind %s -> %s",
                    last, self._views[last].kind, segments[last].kind,
                )
                self._truncate(last)

        for index in range(len(self._views), len(segments)):
            self._views.append(self._create_view(segments[index]))
            self.mutations += 1

        last_index = len(segments) - 1
        for index, (view, segment) in enumerate(zip(self._views, segments)):
            is_open = streaming and parsed.is_open(index)
            markup = format_message(segment.content)
            if streaming and index == last_index and (
                segment.kind == SegmentKind.RESPONSE or is_open
            ):
                markup = with_cursor(markup)
            if view.set_body(markup):
                self.mutations += 1

            if isinstance(view, ThinkingView) and not is_open and view.resolve():
                self.mutations += 1

    def finalize(self, parsed: ParsedAnswer) -> None:
        """Render the final text: no cursor, every thinking round resolved."""
        self.update(parsed, streaming=False)
        for view in self._views:
            if isinstance(view, ThinkingView) and view.resolve():
                self.mutations += 1

    def teardown(self) -> None:
        """Release every view and timer."""
        self._truncate(0)

    def _create_view(self, segment: Segment) -> SegmentView:
        if segment.kind == SegmentKind.THINKING:
            return ThinkingView(
                segment.round or 1,
                on_change=self._on_change,
                tick_interval=self._tick_interval,
                clock=self._clock,
            )
        return ResponseView()

    def _truncate(self, index: int) -> None:
        for view in self._views[index:]:
            view.release()
            self.mutations += 1
        del self._views[index:]
