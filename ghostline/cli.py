import asyncio
import signal
import sys

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .audit import AuditEventType, audit_logger
from .config import BOT_TOKEN_KEY, CHAT_ID_KEY, CONTROL_URL_KEY, Config
from .logging_config import setup_logging

console = Console()


def _load_config() -> Config:
    config = Config()
    config.load()
    return config


@click.group()
@click.version_option(version=__version__, prog_name="ghostline")
def main():
    """Ghostline - Telegram remote control for the Ghostline control system."""
    pass


@main.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]Ghostline Remote[/bold cyan] v{__version__}")


@main.command()
@click.option("--control-url", default=None, help="Base URL of the control system API. Also: CONTROL_URL")
@click.option("--log-level", default=None, help="Log level (debug, info, warning). Also: GHOSTLINE_LOG_LEVEL")
@click.option("--json-logs", is_flag=True, default=None, help="Emit JSON log lines")
def run(control_url: str, log_level: str, json_logs: bool):
    """Run the Telegram bot until interrupted."""
    config = _load_config()
    setup_logging(level=log_level or config.get("LOG_LEVEL"), json_format=json_logs)

    if not config.get(BOT_TOKEN_KEY):
        console.print(f"[red]Error:[/red] {BOT_TOKEN_KEY} not configured.")
        console.print(f"Set it with: ghostline config set {BOT_TOKEN_KEY} <token>")
        sys.exit(1)

    url = control_url or config.get(CONTROL_URL_KEY)
    console.print("[bold cyan]Starting Ghostline remote control...[/bold cyan]")
    console.print(f"Control system: {url}")
    operator = config.get(CHAT_ID_KEY)
    if operator:
        console.print(f"Operator chat: {operator}")
    else:
        console.print("[yellow]No operator bound:[/yellow] the first chat to message the bot becomes the operator.")

    exit_code = asyncio.run(_run(config, url))
    sys.exit(exit_code)


async def _run(config: Config, control_url: str) -> int:
    from .control import HttpControlSystem
    from .telegram.bot import RemoteControlBot

    control = HttpControlSystem(control_url)
    bot = RemoteControlBot(config, control)

    result = await bot.start()
    if not result["success"]:
        console.print(f"[red]✗[/red] {result['message']}")
        await control.aclose()
        return 1
    console.print(f"[green]✓[/green] {result['message']}")
    console.print("[dim]Press Ctrl+C to stop[/dim]")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(bot.stop()))
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await bot.wait_halted()
    finally:
        stopped = await bot.stop()
        await control.aclose()
        console.print(f"[dim]{stopped['message']}[/dim]")

    if bot.fatal_error is not None:
        console.print(f"[red]✗[/red] Halted: {bot.fatal_error}")
        return 1
    return 0


@main.command()
def check():
    """Verify the bot token against the Telegram API."""
    config = _load_config()
    token = config.get(BOT_TOKEN_KEY)
    if not token:
        console.print(f"[red]✗[/red] {BOT_TOKEN_KEY} not configured")
        sys.exit(1)
    ok = asyncio.run(_check(token))
    sys.exit(0 if ok else 1)


async def _check(token: str) -> bool:
    from .telegram.errors import RemoteControlError
    from .telegram.transport import TelegramTransport

    try:
        transport = TelegramTransport(token)
        await transport.open()
        try:
            identity = await transport.get_me()
        finally:
            await transport.close()
    except RemoteControlError as e:
        console.print(f"[red]✗[/red] {e}")
        return False
    console.print(f"[green]✓[/green] Bot verified: {identity.first_name} (@{identity.username})")
    return True


@main.group(name="config")
def config_group():
    """Show or change configuration."""
    pass


@config_group.command(name="show")
@click.option("--reveal", is_flag=True, help="Show sensitive values unmasked")
def config_show(reveal: bool):
    """Show the effective configuration."""
    config = _load_config()
    table = Table(title="Ghostline Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in config.get_all(include_sensitive=reveal).items():
        table.add_row(key, value)
    console.print(table)
    console.print(f"[dim]Persisted at {config.config_file}[/dim]")


@config_group.command(name="set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Persist a configuration value."""
    config = _load_config()
    config.set(key.upper(), value, persist=True)
    console.print(f"[green]✓[/green] {key.upper()} saved")


@main.command(name="reset-operator")
@click.confirmation_option(prompt="Forget the bound operator chat?")
def reset_operator():
    """Forget the bound operator; the next chat to write becomes the operator."""
    config = _load_config()
    previous = config.get(CHAT_ID_KEY)
    if not previous:
        console.print("[dim]No operator bound[/dim]")
        return
    config.reset(CHAT_ID_KEY)
    audit_logger.log(AuditEventType.OPERATOR_RESET, chat_id=previous, details={"source": "cli"})
    console.print(f"[green]✓[/green] Operator chat {previous} forgotten")


@main.command()
@click.option("--limit", "-n", default=20, help="Number of entries to show")
@click.option("--unauthorized", is_flag=True, help="Only show access attempts from other chats")
def audit(limit: int, unauthorized: bool):
    """Show recent audit log entries, newest first."""
    if unauthorized:
        entries = audit_logger.get_unauthorized_attempts(limit=limit)
    else:
        entries = audit_logger.get_recent(limit=limit)
    if not entries:
        console.print(f"[dim]No audit entries in {audit_logger.log_file}[/dim]")
        return

    table = Table(title="Audit Log")
    table.add_column("Time", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Chat")
    table.add_column("OK")
    table.add_column("Details")
    for entry in entries:
        table.add_row(
            entry.get("timestamp", ""),
            entry.get("event", ""),
            str(entry.get("chat_id") or "-"),
            "[green]✓[/green]" if entry.get("success") else "[red]✗[/red]",
            ", ".join(f"{k}={v}" for k, v in (entry.get("details") or {}).items()),
        )
    console.print(table)


if __name__ == "__main__":
    main()
