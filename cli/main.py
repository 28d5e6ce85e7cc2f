"""Save & restore CLI, entry-point for all service operations.

Usage:
    python cli/main.py --help

Command groups:
    db        database initialisation
    folder    folders
    config    PV configurations
    node      move / rename / delete any node
    snapshot  take, commit, list and tag snapshots
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that
# `from saverestore.xxx import ...` works when the CLI is invoked as
# `python cli/main.py` from any working directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from typing import Optional

import typer

from saverestore.config import settings
from saverestore.db import get_connection, init_db, nodes
from saverestore.db.models import ROOT_NODE_ID
from saverestore.logging_config import configure_logging
from cli.commands.config import config_app
from cli.commands.folder import folder_app
from cli.commands.node import node_app
from cli.commands.snapshot import snapshot_app
from cli.context import handle_errors, load_context, save_context
from cli.rendering import render_tree

app = typer.Typer(
    name="saverestore",
    help="Save & restore CLI.",
    no_args_is_help=True,
)
app.add_typer(folder_app, name="folder")
app.add_typer(config_app, name="config")
app.add_typer(node_app, name="node")
app.add_typer(snapshot_app, name="snapshot")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    configure_logging(verbose=verbose)


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


# ---------------------------------------------------------------------------
# Tree & user
# ---------------------------------------------------------------------------
@app.command("tree")
@handle_errors
def tree(
    node_id: str = typer.Argument(ROOT_NODE_ID, help="Node to start from (default: root)."),
) -> None:
    """Print the node hierarchy."""
    conn = get_connection()
    init_db(conn)
    try:
        root = nodes.get_node(conn, node_id)
        if root is None:
            typer.echo(f"❌ Node not found: {node_id}")
            raise typer.Exit(code=1)

        def children_of(nid: str):
            return [nodes.get_node(conn, c.id) for c in nodes.get_child_nodes(conn, nid)]

        typer.echo(render_tree(root, children_of))
    finally:
        conn.close()


@app.command("login")
def login(
    username: str = typer.Argument(..., help="User name to record changes under."),
) -> None:
    """Remember the user name for later commands."""
    ctx = load_context()
    ctx.username = username
    save_context(ctx)
    typer.echo(f"👤 Logged in as {username}")


@app.command("whoami")
def whoami() -> None:
    """Show the remembered user name."""
    username = load_context().username
    typer.echo(username or "Not logged in.")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Port."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("saverestore.api.app:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
