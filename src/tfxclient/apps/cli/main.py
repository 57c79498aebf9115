# src/tfxclient/apps/cli/main.py
from __future__ import annotations

import typer

from tfxclient import __version__
from tfxclient.apps.cli.commands import auth, queue, sync

app = typer.Typer(help="tfxclient: network access layer of the driving-school app", no_args_is_help=True)
app.add_typer(sync.app, name="sync")
app.add_typer(queue.app, name="queue")
app.add_typer(auth.app, name="auth")


@app.command("version")
def version():
    typer.echo(__version__)


if __name__ == "__main__":
    app()
