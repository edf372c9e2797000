"""chatrelay CLI: Typer + Rich terminal interface.

Commands: chat, ask, models, health, serve.
Running ``chatrelay`` with no subcommand starts the interactive REPL.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chatrelay import __version__
from chatrelay.client.formatting import format_message
from chatrelay.client.session import SessionState
from chatrelay.client.transport import ChatTransport, ChatTransportError
from chatrelay.config import ClientState, ConfigError, load_config, load_env_files
from chatrelay.schemas.config import ChatConfig

# Load ~/.chatrelay/chat.env and .env on startup
load_env_files()

console = Console()

app = typer.Typer(
    name="chatrelay",
    help="Streaming chat client and SSE relay for an LLM backend.",
    no_args_is_help=False,
    rich_markup_mode="rich",
)


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"chatrelay {__version__}")
        raise typer.Exit()


# ── App Callback ────────────────────────────────────────────────


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config_path: Path | None = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file (defaults to the packaged one).",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log at DEBUG level.",
    ),
) -> None:
    """chatrelay: ask an LLM backend questions and watch answers stream in."""
    config = _load_config(config_path)
    _configure_logging(config, verbose)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        _start_repl(config)


# ── Helpers ──────────────────────────────────────────────────────


def _load_config(config_path: Path | None) -> ChatConfig:
    """Load config, exit on error."""
    try:
        return load_config(config_path)
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _configure_logging(config: ChatConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _make_transport(config: ChatConfig) -> ChatTransport:
    return ChatTransport.from_config(config)


def _start_repl(config: ChatConfig) -> None:
    from chatrelay.repl import ChatREPL

    ChatREPL(config, console=console, transport=_make_transport(config)).run()


def _run_request(coro_factory, transport: ChatTransport):
    """Run one transport call to completion, exit with a message on failure."""

    async def _call():
        try:
            return await coro_factory()
        finally:
            await transport.aclose()

    try:
        return asyncio.run(_call())
    except ChatTransportError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None


# ── chatrelay chat ───────────────────────────────────────────────


@app.command()
def chat(ctx: typer.Context) -> None:
    """Start the interactive chat REPL."""
    _start_repl(ctx.obj)


# ── chatrelay ask ────────────────────────────────────────────────


@app.command()
def ask(
    ctx: typer.Context,
    question: str = typer.Argument(..., help="Question to ask"),
    model: str | None = typer.Option(
        None, "--model", "-m",
        help="Model identifier (defaults to the last selected model).",
    ),
    no_stream: bool = typer.Option(
        False, "--no-stream",
        help="Wait for the full answer instead of streaming it.",
    ),
) -> None:
    """Ask one question and print the answer."""
    config: ChatConfig = ctx.obj
    transport = _make_transport(config)
    state_store = ClientState()
    selected = model or state_store.load_model()

    if no_stream:
        answer = _run_request(lambda: transport.ask(question, selected), transport)
        console.print(Panel(
            Text.from_markup(format_message(answer)),
            title="[bold green]Assistant[/bold green]",
            title_align="left",
            border_style="green",
        ))
        return

    from chatrelay.repl import ChatREPL

    repl = ChatREPL(config, console=console, transport=transport, state_store=state_store)
    repl.controller.selected_model = selected
    state = repl.ask_once(question)
    if state in (SessionState.BLOCKED, SessionState.ERRORED):
        raise typer.Exit(1)


# ── chatrelay models ─────────────────────────────────────────────


@app.command()
def models(ctx: typer.Context) -> None:
    """List the models the backend offers."""
    config: ChatConfig = ctx.obj
    transport = _make_transport(config)
    response = _run_request(transport.fetch_models, transport)

    if not response.models:
        console.print("[dim]No models available.[/dim]")
        return

    saved = ClientState().load_model()
    table = Table(title="Available Models", show_lines=False)
    table.add_column("Identifier", style="bold cyan")
    table.add_column("Default", justify="center")
    table.add_column("Selected", justify="center")
    for identifier in response.identifiers():
        table.add_row(
            identifier,
            "✓" if identifier == response.default_model else "",
            "✓" if identifier == saved else "",
        )
    console.print(table)
    console.print(f"\n[dim]{len(response.models)} models available[/dim]")


# ── chatrelay health ─────────────────────────────────────────────


@app.command()
def health(ctx: typer.Context) -> None:
    """Check that the relay server is up."""
    config: ChatConfig = ctx.obj
    transport = _make_transport(config)
    response = _run_request(transport.health, transport)
    console.print(
        f"[green]✓[/green] {transport.base_url} is [bold]{response.status}[/bold] "
        f"[dim](backend {response.fastapi_url})[/dim]"
    )


# ── chatrelay serve ──────────────────────────────────────────────


@app.command()
def serve(
    ctx: typer.Context,
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on"),
    backend: str | None = typer.Option(
        None, "--backend", "-b",
        help="Backend base URL (overrides FASTAPI_URL)",
    ),
    static_dir: Path | None = typer.Option(
        None, "--static-dir",
        help="Directory of static files to serve at /",
    ),
) -> None:
    """Run the SSE relay server."""
    config: ChatConfig = ctx.obj
    updates: dict[str, object] = {}
    if host:
        updates["host"] = host
    if port:
        updates["port"] = port
    if backend:
        updates["backend_url"] = backend
    if static_dir:
        updates["static_dir"] = str(static_dir)
    config = config.model_copy(update=updates)

    import uvicorn

    from chatrelay.server import create_app

    console.print(Panel(
        f"[bold]URL:[/bold] http://{config.host}:{config.port}\n"
        f"[bold]Backend:[/bold] {config.backend_url}\n"
        f"[bold]Static:[/bold] {config.static_dir or 'none'}",
        title="[bold blue]chatrelay server[/bold blue]",
        border_style="blue",
    ))

    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="warning")


# ── Entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    app()
