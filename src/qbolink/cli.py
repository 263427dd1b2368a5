"""
qbolink CLI — manage QuickBooks connections and sync from the terminal.

Usage:
    qbolink connect --user 42
    qbolink callback "https://app.example.com/quickbooks/callback?code=...&realmId=...&state=..."
    qbolink status --user 42
    qbolink pull customer --user 42
    qbolink push invoice --user 42 --id 7
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import parse_qsl, urlparse

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from qbolink import __version__

T = TypeVar("T")

app = typer.Typer(
    name="qbolink",
    help="QuickBooks Online connections and entity sync",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_USER = typer.Option(..., "--user", "-u", help="Application user id")
_CONFIG = typer.Option("qbolink.yaml", "--config", "-c", help="Path to config file")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]qbolink[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """qbolink — keep QuickBooks connected and in sync."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose)],
    )


def _run(config: str, action: Callable[[Any], Awaitable[T]]) -> T:
    """Build the service container, run one async action, and clean up."""
    from qbolink.link import QBOLink

    config_path = config if Path(config).exists() else None
    try:
        link = QBOLink.from_config(config_path)
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e

    async def _main() -> T:
        try:
            return await action(link)
        finally:
            await link.close()

    return asyncio.run(_main())


def _fail(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Connection commands
# ---------------------------------------------------------------------------

@app.command()
def connect(user: str = _USER, config: str = _CONFIG) -> None:
    """Start the OAuth flow and print the Intuit consent URL."""

    async def action(link: Any) -> Any:
        return link.flow.connect(user)

    result = _run(config, action)
    if result.already_connected:
        console.print(f"[green]✓[/green] User {user} is already connected to QuickBooks")
        return
    console.print(Panel.fit(
        f"Open this URL to authorize QuickBooks access:\n\n[bold]{result.authorization_url}[/bold]",
        title="qbolink connect",
    ))
    console.print("[dim]Then run [bold]qbolink callback <redirect-url>[/bold] with the URL Intuit redirects to.[/dim]")


@app.command()
def callback(
    redirect_url: str = typer.Argument(..., help="Full redirect URL (or query string) Intuit sent back"),
    config: str = _CONFIG,
) -> None:
    """Complete the OAuth flow from Intuit's redirect."""
    from qbolink.messages import user_message

    query = urlparse(redirect_url).query or redirect_url.lstrip("?")
    params = dict(parse_qsl(query))

    async def action(link: Any) -> Any:
        return link.config, await link.flow.handle_callback(params)

    cfg, result = _run(config, action)
    if not result.success:
        _fail(user_message(result.reason, cfg.errors, result.detail))

    credential = result.credential
    company = credential.company_name or "your company"
    console.print(f"[green]✓[/green] Connected to QuickBooks ({company}, realm {credential.realm_id})")


@app.command()
def status(user: str = _USER, config: str = _CONFIG) -> None:
    """Show the user's connection status."""

    async def action(link: Any) -> Any:
        return await link.flow.status(user)

    result = _run(config, action)
    table = Table(title=f"QuickBooks connection — user {user}", show_lines=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Connected", "[green]yes[/green]" if result.connected else "[red]no[/red]")
    if result.connected:
        table.add_row("Company", result.company_name or "—")
        table.add_row("Realm", result.realm_id or "—")
        table.add_row("Access token expires", f"{result.access_token_expires_at:%Y-%m-%d %H:%M:%S %Z}")
        table.add_row("Refresh token expires", f"{result.refresh_token_expires_at:%Y-%m-%d %H:%M:%S %Z}")
        table.add_row("Needs refresh", "yes" if result.needs_refresh else "no")
    console.print(table)


@app.command()
def refresh(user: str = _USER, config: str = _CONFIG) -> None:
    """Refresh the user's access token now."""
    from qbolink.errors import ConnectionRequiredError, RemoteServiceError
    from qbolink.messages import message_for

    async def action(link: Any) -> Any:
        try:
            return await link.flow.refresh_now(user)
        except ConnectionRequiredError as e:
            return message_for(e.reason, link.config.errors)
        except RemoteServiceError as e:
            return f"QuickBooks rejected the refresh: {e}"

    result = _run(config, action)
    if isinstance(result, str):
        _fail(result)
    console.print(f"[green]✓[/green] Access token valid until {result.access_token_expires_at:%Y-%m-%d %H:%M:%S %Z}")


@app.command()
def disconnect(user: str = _USER, config: str = _CONFIG) -> None:
    """Revoke the user's grant and deactivate the stored credential."""

    async def action(link: Any) -> bool:
        return await link.flow.disconnect(user)

    if not _run(config, action):
        _fail(f"User {user} has no active QuickBooks connection")
    console.print(f"[green]✓[/green] User {user} disconnected from QuickBooks")


@app.command("cleanup-states")
def cleanup_states(config: str = _CONFIG) -> None:
    """Delete expired OAuth states."""

    async def action(link: Any) -> int:
        return link.states.cleanup()

    removed = _run(config, action)
    console.print(f"[green]✓[/green] Removed {removed} expired OAuth state(s)")


@app.command("init-db")
def init_db(config: str = _CONFIG) -> None:
    """Create the qbolink tables (idempotent)."""

    async def action(link: Any) -> str:
        link.db.create_all()
        return link.db.engine.url.render_as_string(hide_password=True)

    url = _run(config, action)
    console.print(f"[green]✓[/green] Schema ready on [bold]{url}[/bold]")


# ---------------------------------------------------------------------------
# Sync commands
# ---------------------------------------------------------------------------

def _sync(config: str, entity: str, op: Callable[[Any], Awaitable[T]]) -> T:
    """Run a sync operation, turning expected failures into CLI errors."""
    from qbolink.errors import ConnectionRequiredError, NotFoundError, RemoteServiceError
    from qbolink.messages import message_for
    from qbolink.models import ReasonCode

    async def action(link: Any) -> Any:
        try:
            engine = link.engine(entity)
        except KeyError:
            return f"Unknown entity '{entity}'. Known: {', '.join(link.registry.entity_types)}"
        try:
            return await op(engine)
        except ConnectionRequiredError as e:
            return message_for(e.reason, link.config.errors)
        except NotFoundError as e:
            return str(e)
        except RemoteServiceError as e:
            if link.config.errors.show_detailed_errors:
                return f"QuickBooks API error: {e}"
            return message_for(ReasonCode.API_ERROR, link.config.errors)

    result = _run(config, action)
    if isinstance(result, str):
        _fail(result)
    return result


@app.command()
def pull(
    entity: str = typer.Argument(..., help="Entity type, e.g. customer or invoice"),
    user: str = _USER,
    remote_id: str = typer.Option(None, "--id", help="Pull a single QuickBooks id"),
    config: str = _CONFIG,
) -> None:
    """Pull entities from QuickBooks into the local database."""

    async def op(engine: Any) -> int:
        return await engine.pull(user, remote_id)

    with console.status(f"[bold green]Pulling {entity} records...[/bold green]"):
        count = _sync(config, entity, op)
    console.print(f"[green]✓[/green] Pulled {count} {entity} record(s)")


@app.command()
def push(
    entity: str = typer.Argument(..., help="Entity type, e.g. customer or invoice"),
    user: str = _USER,
    record_id: int = typer.Option(None, "--id", help="Push one local record; default pushes all pending"),
    config: str = _CONFIG,
) -> None:
    """Push local records to QuickBooks."""

    async def op(engine: Any) -> Any:
        if record_id is not None:
            return await engine.push(engine.get_record(user, record_id))
        return await engine.push_pending(user)

    with console.status(f"[bold green]Pushing {entity} records...[/bold green]"):
        result = _sync(config, entity, op)

    if record_id is not None:
        console.print(f"[green]✓[/green] Pushed {entity} #{record_id} → QuickBooks {result.quickbooks_id}")
        return

    console.print(f"[green]✓[/green] Pushed {len(result.pushed)} {entity} record(s)")
    if result.failed:
        table = Table(title="Failed records")
        table.add_column("Record", style="bold")
        table.add_column("Error")
        for failed_id, error in result.failed.items():
            table.add_row(str(failed_id), error)
        console.print(table)
        raise typer.Exit(1)


@app.command()
def delete(
    entity: str = typer.Argument(..., help="Entity type, e.g. customer or invoice"),
    record_id: int = typer.Argument(..., help="Local record id"),
    user: str = _USER,
    config: str = _CONFIG,
) -> None:
    """Delete a local record's QuickBooks counterpart."""

    async def op(engine: Any) -> bool:
        return await engine.remote_delete(engine.get_record(user, record_id))

    _sync(config, entity, op)
    console.print(f"[green]✓[/green] Removed {entity} #{record_id} from QuickBooks")


if __name__ == "__main__":
    app()
