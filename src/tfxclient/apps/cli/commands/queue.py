# src/tfxclient/apps/cli/commands/queue.py
from __future__ import annotations

import json
from typing import Optional

import typer

from tfxclient.apps.cli._runtime import run_with_context
from tfxclient.services.sync.models import OPERATION_KINDS

app = typer.Typer(help="Inspect and append offline operations")


@app.command("list")
def list_pending(as_json: bool = typer.Option(False, "--json", help="Print raw wire format")):
    async def _action(ctx):
        return await ctx.queue.list_pending()

    operations = run_with_context(_action)
    if as_json:
        typer.echo(json.dumps([op.to_wire() for op in operations], ensure_ascii=False, indent=2))
        return
    if not operations:
        typer.echo("queue is empty")
        return
    for index, op in enumerate(operations, start=1):
        typer.echo(f"{index:>3}. {op.timestamp} {op.operation:<6} {op.entity_type} {op.entity_id or '-'}")


@app.command("add")
def add(
    operation: str = typer.Argument(..., help="create | update | delete"),
    entity_type: str = typer.Argument(...),
    entity_id: Optional[str] = typer.Option(None, "--id"),
    payload: str = typer.Option("null", "--payload", help="JSON payload"),
):
    if operation not in OPERATION_KINDS:
        raise typer.BadParameter(f"operation must be one of {', '.join(OPERATION_KINDS)}")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"payload is not valid JSON: {exc}") from exc

    async def _action(ctx):
        return await ctx.queue.enqueue(operation, entity_type, data, entity_id=entity_id)

    queued = run_with_context(_action)
    typer.echo(f"queued {queued.operation} {queued.entity_type} at {queued.timestamp}")
