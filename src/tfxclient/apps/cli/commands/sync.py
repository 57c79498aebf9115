# src/tfxclient/apps/cli/commands/sync.py
from __future__ import annotations

import json

import typer

from tfxclient.apps.cli._runtime import run_with_context
from tfxclient.services.api.errors import ApiError, SessionExpiredError, TransportError

app = typer.Typer(help="Offline sync queue flush")


@app.command("status")
def status(remote: bool = typer.Option(False, "--remote", help="Also ask the server for its view")):
    """Show pending operations and the last successful sync."""

    async def _action(ctx):
        state = await ctx.queue.sync_state()
        typer.echo(f"pending: {state.pending_count}")
        typer.echo(f"last sync: {state.last_sync_at or '-'}")
        quarantined = await ctx.queue.quarantined()
        if quarantined:
            typer.secho(f"quarantined: {len(quarantined)} unreadable entries", fg=typer.colors.YELLOW)
        if remote:
            try:
                server = await ctx.queue.fetch_server_status(ctx.settings.api_base)
            except (ApiError, TransportError) as exc:
                typer.secho(f"server status unavailable: {exc}", fg=typer.colors.YELLOW)
            else:
                typer.echo(json.dumps(server, ensure_ascii=False, indent=2))

    run_with_context(_action)


@app.command("now")
def sync_now():
    """Drain the queue once."""

    async def _action(ctx):
        return await ctx.auto_sync.sync_now()

    try:
        result = run_with_context(_action)
    except SessionExpiredError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(result.as_dict(), ensure_ascii=False, indent=2))
    if not result.success:
        raise typer.Exit(1)


@app.command("clear")
def clear(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")):
    """Drop every pending operation without sending it."""
    if not yes:
        typer.confirm("Discard all pending operations?", abort=True)

    async def _action(ctx):
        await ctx.queue.clear()

    run_with_context(_action)
    typer.echo("queue cleared")
