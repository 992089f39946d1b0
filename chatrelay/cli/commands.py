"""CLI commands for chatrelay."""

import asyncio
import json
import os
import sys
from pathlib import Path

import typer
from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from chatrelay import __logo__, __version__

app = typer.Typer(
    name="chatrelay",
    help=f"{__logo__} chatrelay - conversational relay between chat users and a completion service",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

_PROMPT_SESSION: PromptSession | None = None


def _init_prompt_session() -> None:
    """Create the prompt_toolkit session with persistent file history."""
    global _PROMPT_SESSION

    history_file = Path.home() / ".chatrelay" / "history" / "cli_history"
    history_file.parent.mkdir(parents=True, exist_ok=True)

    _PROMPT_SESSION = PromptSession(
        history=FileHistory(str(history_file)),
        enable_open_in_editor=False,
        multiline=False,
    )


async def _read_interactive_input_async() -> str:
    if _PROMPT_SESSION is None:
        raise RuntimeError("Call _init_prompt_session() first")
    try:
        with patch_stdout():
            return await _PROMPT_SESSION.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
    except EOFError as exc:
        raise KeyboardInterrupt from exc


def _is_exit_command(command: str) -> bool:
    return command.lower() in EXIT_COMMANDS


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {message}")


def _print_reply(text: str, render_markdown: bool) -> None:
    body = Markdown(text) if render_markdown else Text(text)
    console.print()
    console.print(f"[cyan]{__logo__} chatrelay[/cyan]")
    console.print(body)
    console.print()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chatrelay v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """chatrelay - conversational relay."""
    pass


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """Initialize chatrelay configuration."""
    from chatrelay.config.loader import get_config_path, load_config, save_config
    from chatrelay.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if typer.confirm("Overwrite with defaults?"):
            config_path.unlink()
            path = save_config(Config(), config_path.with_suffix(".jsonc"))
            console.print(f"[green]✓[/green] Config reset to defaults at {path}")
        else:
            path = save_config(load_config(), config_path)
            console.print(f"[green]✓[/green] Config refreshed at {path} (existing values preserved)")
    else:
        path = save_config(Config())
        console.print(f"[green]✓[/green] Created config at {path}")

    console.print(f"\n{__logo__} chatrelay is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Add your API key under [cyan]endpoints.example.llmApiKey[/cyan] in {path}")
    console.print("     or export [cyan]EXAMPLE_RTM_LLM_API_KEY[/cyan]")
    console.print("  2. Chat: [cyan]chatrelay chat[/cyan]")


# ============================================================================
# Status
# ============================================================================


@app.command()
def status():
    """Show configured endpoints."""
    from chatrelay.config.loader import get_config_path, load_config
    from chatrelay.session.registry import resolve_settings

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} chatrelay Status\n")
    console.print(
        f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}"
    )
    console.print(f"Max passes: {config.loop.max_passes}, streaming: {config.loop.stream}")
    console.print(f"Tool cache TTL: {config.cache.ttl_seconds}s\n")

    table = Table(title="Endpoints")
    table.add_column("Endpoint", style="cyan")
    table.add_column("App ID")
    table.add_column("From user")
    table.add_column("Channel")
    table.add_column("Model")
    table.add_column("API key")

    names = set(config.endpoints) | {"example"}
    for name in sorted(names):
        s = resolve_settings(name, config.endpoint(name))
        table.add_row(
            name,
            s.rtm_app_id or "[dim]not set[/dim]",
            s.rtm_from_user or "[dim]not set[/dim]",
            s.rtm_channel or "[dim]not set[/dim]",
            s.llm_model,
            "[green]✓[/green]" if s.llm_api_key else "[dim]not set[/dim]",
        )
    console.print(table)


# ============================================================================
# Interactive chat over the in-process transport
# ============================================================================


@app.command()
def chat(
    endpoint: str = typer.Option("example", "--endpoint", "-e", help="Endpoint name"),
    message: str = typer.Option(None, "--message", "-m", help="Send one message and exit"),
    user: str = typer.Option("cli-user", "--user", "-u", help="User id to chat as"),
    markdown: bool = typer.Option(
        True, "--markdown/--no-markdown", help="Render replies as Markdown"
    ),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs during chat"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug-level logs (implies --logs)"),
):
    """Chat with an endpoint locally, replies delivered with the typing delay."""
    from chatrelay.agent.orchestrator import ConversationOrchestrator, RelayContext
    from chatrelay.bus.events import OutboundMessage
    from chatrelay.channels.local import LocalTransport
    from chatrelay.config.loader import load_config
    from chatrelay.endpoints.example import get_endpoint
    from chatrelay.session.registry import env_prefix, resolve_settings

    _configure_logging(verbose)
    if logs or verbose:
        logger.enable("chatrelay")
    else:
        logger.disable("chatrelay")

    endpoint_config = get_endpoint(endpoint)
    if endpoint_config is None:
        console.print(f"[red]Unknown endpoint: {endpoint}[/red]")
        raise typer.Exit(1)

    config = load_config()
    settings = resolve_settings(endpoint, config.endpoint(endpoint))
    if not settings.llm_api_key:
        console.print(f"[red]Error: no API key for {endpoint}[/red]")
        console.print(f"Set endpoints.{endpoint}.llmApiKey or {env_prefix(endpoint)}_LLM_API_KEY")
        raise typer.Exit(1)

    # The local transport needs an identity even when no RTM project is configured
    prefix = env_prefix(endpoint)
    environ = dict(os.environ)
    environ.setdefault(f"{prefix}_APP_ID", settings.rtm_app_id or "local")
    environ.setdefault(f"{prefix}_FROM_USER", settings.rtm_from_user or "agent")
    environ.setdefault(f"{prefix}_CHANNEL", settings.rtm_channel or "local")

    def _on_publish(msg: OutboundMessage) -> None:
        try:
            data = json.loads(msg.payload)
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("type") == "typing_start":
            console.print("[dim]typing...[/dim]")
        elif isinstance(data, dict) and "img" in data:
            console.print(f"[magenta]📸 {data['img']}[/magenta]")
        elif msg.payload.startswith("<"):
            console.print(f"[yellow]command:[/yellow] {msg.payload}")
        else:
            _print_reply(msg.payload, markdown)

    transport = LocalTransport(on_publish=_on_publish)
    context = RelayContext.from_config(
        config, transport_factory=lambda _settings: transport, environ=environ
    )
    orchestrator = ConversationOrchestrator(context)

    async def _send(session, text: str) -> None:
        await transport.dispatch(
            session.app_id, session.from_user, session.channel, {"publisher": user, "message": text}
        )
        await session.drain()

    async def run() -> None:
        await orchestrator.start()
        try:
            session = await orchestrator.attach(endpoint, endpoint_config)
            if session is None:
                console.print(f"[red]Could not initialize {endpoint} (see logs with --logs)[/red]")
                return
            if message:
                await _send(session, message)
                return

            _init_prompt_session()
            console.print(
                f"{__logo__} Chatting with [cyan]{endpoint}[/cyan] "
                "(type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n"
            )
            while True:
                try:
                    text = (await _read_interactive_input_async()).strip()
                except KeyboardInterrupt:
                    console.print("\nGoodbye!")
                    break
                if not text:
                    continue
                if _is_exit_command(text):
                    console.print("\nGoodbye!")
                    break
                await _send(session, text)
        finally:
            await orchestrator.stop()

    asyncio.run(run())
