"""Interactive chat REPL.

Reads questions from the terminal and streams each answer into a Rich
Live region. Lines starting with ``/`` are commands. Launch with
``chatrelay`` (no subcommand) or ``chatrelay chat``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Coroutine
from typing import Any, TypeVar

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from chatrelay.client.display import ChatDisplay
from chatrelay.client.session import ChatController, SessionState
from chatrelay.client.transport import ChatTransport, ChatTransportError
from chatrelay.config import ClientState
from chatrelay.schemas.config import ChatConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXIT_COMMANDS = {"/exit", "/quit"}

_HELP_ROWS = [
    ("/model <id>", "Select the model for new questions"),
    ("/models", "List the models the backend offers"),
    ("/reset", "Clear the conversation"),
    ("/toggle <round>", "Expand or collapse a thinking round of the last answer"),
    ("/dismiss", "Dismiss error and blocked notices"),
    ("/help", "Show this help"),
    ("/exit", "Exit the REPL"),
]


class ChatREPL:
    """Interactive loop around a ChatController.

    Each question runs in its own ``asyncio.run()``; the transport drops
    its HTTP client at the end of every run so nothing outlives a loop.
    """

    def __init__(
        self,
        config: ChatConfig,
        *,
        console: Console | None = None,
        transport: ChatTransport | None = None,
        state_store: ClientState | None = None,
    ) -> None:
        self.console = console or Console()
        self._transport = transport or ChatTransport.from_config(config)
        self._display = ChatDisplay(self.console)
        self.controller = ChatController(
            self._transport,
            state_store=state_store if state_store is not None else ClientState(),
            on_change=self._display.refresh,
            tick_interval=config.tick_interval,
        )

    # ── Loop ──────────────────────────────────────────────────────

    def run(self) -> None:
        """Main REPL loop."""
        self._load_models()
        self.console.print(
            f"[bold green]chatrelay[/bold green] [dim]connected to "
            f"{self._transport.base_url}. Type /help for commands.[/dim]"
        )

        while True:
            try:
                prompt_text = Text()
                prompt_text.append("\nchatrelay", style="bold green")
                if self.controller.selected_model:
                    prompt_text.append(f" ({self.controller.selected_model})", style="dim")
                prompt_text.append(" ▸ ", style="green")

                user_input = self.console.input(prompt_text).strip()
                if not user_input:
                    continue
                if user_input.lower() in _EXIT_COMMANDS:
                    self.console.print("[dim]Goodbye.[/dim]")
                    break

                self.dispatch(user_input)

            except (KeyboardInterrupt, EOFError):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

    def dispatch(self, user_input: str) -> None:
        """Route one line of input to a command or a question."""
        if not user_input.startswith("/"):
            self.ask_once(user_input)
            return

        command, _, arg = user_input.partition(" ")
        command = command.lower()
        arg = arg.strip()

        if command == "/help":
            self._show_help()
        elif command == "/models":
            self._load_models()
            self._show_models()
        elif command == "/model":
            self._select_model(arg)
        elif command == "/reset":
            self._run(self.controller.reset())
            self.console.print("  [dim]Conversation cleared.[/dim]")
        elif command == "/toggle":
            self._toggle(arg)
        elif command == "/dismiss":
            count = self.controller.transcript.dismiss_notices()
            self.console.print(f"  [dim]Dismissed {count} notice(s).[/dim]")
        else:
            self.console.print(
                f"  [red]Unknown command:[/red] {command}. Type /help for commands."
            )

    # ── Asking ────────────────────────────────────────────────────

    def ask_once(self, question: str) -> SessionState:
        """Stream one answer; Ctrl+C stops it and keeps the partial text."""
        try:
            session = self._run(self._ask(question))
        except Exception as e:
            self.console.print(f"  [red]Error:[/red] {escape(str(e))}")
            return SessionState.ERRORED
        return session.state if session is not None else SessionState.IDLE

    async def _ask(self, question: str):
        transcript = self.controller.transcript
        loop = asyncio.get_running_loop()
        if question.strip():
            self.console.print("[dim]Press Ctrl+C to stop the answer.[/dim]")
        with self._display.showing(transcript.view(transcript.mark())):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signal.SIGINT, self.controller.stop)
            try:
                return await self.controller.ask(question)
            finally:
                with contextlib.suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(signal.SIGINT)

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        async def _with_cleanup() -> T:
            try:
                return await coro
            finally:
                await self._transport.aclose()

        return asyncio.run(_with_cleanup())

    # ── Commands ──────────────────────────────────────────────────

    def _load_models(self) -> None:
        try:
            self._run(self.controller.load_models())
        except ChatTransportError as e:
            logger.debug("Model list unavailable: %s", e.message)
            self.console.print(f"  [yellow]Could not load models:[/yellow] {e.message}")

    def _show_models(self) -> None:
        models = self.controller.available_models
        if not models:
            self.console.print("  [dim]No models available.[/dim]")
            return
        table = Table(title="Models", show_header=False, box=None)
        table.add_column("", width=2)
        table.add_column("Model", style="bold cyan")
        for model in models:
            marker = "▸" if model == self.controller.selected_model else ""
            table.add_row(marker, model)
        self.console.print(table)

    def _select_model(self, model: str) -> None:
        if not model:
            current = self.controller.selected_model or "(backend default)"
            self.console.print(f"  Current model: [green]{current}[/green]")
            return
        try:
            self._run(self.controller.select_model(model))
        except ValueError as e:
            options = ", ".join(self.controller.available_models)
            self.console.print(f"  [red]{e}[/red]. Choose from: {options}")
            return
        self.console.print(f"  Model set to [green]{model}[/green]")

    def _toggle(self, arg: str) -> None:
        try:
            round_number = int(arg)
        except ValueError:
            self.console.print("  [red]Usage:[/red] /toggle <round>")
            return
        message = self.controller.transcript.last_bot_message()
        if message is None or not message.toggle(round_number):
            self.console.print(f"  [red]No thinking round {round_number}[/red]")
            return
        self.console.print(message)

    def _show_help(self) -> None:
        help_text = Text()
        help_text.append("\n  Commands\n", style="bold")
        for command, description in _HELP_ROWS:
            help_text.append(f"    {command:<18}", style="green")
            help_text.append(f"  {description}\n")
        help_text.append("\n  Anything else is sent as a question. ", style="dim")
        help_text.append("Ctrl+C stops a streaming answer.\n", style="dim")
        self.console.print(help_text)
