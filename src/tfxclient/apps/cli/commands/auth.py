# src/tfxclient/apps/cli/commands/auth.py
from __future__ import annotations

import json

import typer

from tfxclient.apps.cli._runtime import run_with_context

app = typer.Typer(help="Stored credentials")


@app.command("status")
def status():
    """Show which credentials are present (never their values)."""

    async def _action(ctx):
        snapshot = await ctx.credentials.snapshot()
        return ctx.credentials.backend.name, snapshot.as_status()

    backend, data = run_with_context(_action)
    typer.echo(f"backend: {backend}")
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


@app.command("logout")
def logout():
    """Forget every credential, the device certificate and offline data."""

    async def _action(ctx):
        await ctx.logout()

    run_with_context(_action)
    typer.echo("logged out")
