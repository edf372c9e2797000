"""Cancellable elapsed-time ticker for live thinking labels."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable


class ElapsedTimer:
    """Counts whole seconds since creation and ticks on a fixed cadence.

    The ticking task is scoped to the owning view: ``stop()`` cancels it
    and freezes the elapsed value. Without a running event loop the timer
    still measures time but does not tick.
    """

    def __init__(
        self,
        on_tick: Callable[[int], None] | None = None,
        *,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_tick = on_tick
        self._interval = interval
        self._clock = clock
        self._started_at = clock()
        self._frozen: int | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._frozen is None

    @property
    def elapsed(self) -> int:
        """Whole seconds elapsed, frozen once stopped."""
        if self._frozen is not None:
            return self._frozen
        return int(self._clock() - self._started_at)

    def start(self) -> None:
        if not self.running or self._task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._task = loop.create_task(self._run(), name="thinking-timer")

    def stop(self) -> int:
        """Stop ticking and return the frozen elapsed seconds.

        Safe to call repeatedly; only the first call has an effect.
        """
        if self._frozen is None:
            self._frozen = self.elapsed
            if self._task is not None:
                self._task.cancel()
                self._task = None
        return self._frozen

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if self._on_tick is not None:
                self._on_tick(self.elapsed)
