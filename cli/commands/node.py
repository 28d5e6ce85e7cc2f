"""Commands that work on any node: move, rename, delete."""

from typing import Optional

import typer

from saverestore import services
from saverestore.db import get_connection, init_db
from cli.context import handle_errors, resolve_user

node_app = typer.Typer(help="Move, rename or delete nodes.", no_args_is_help=True)


@node_app.command("move")
@handle_errors
def node_move(
    node_id: str = typer.Argument(..., help="Node to move."),
    target_id: str = typer.Argument(..., help="Destination folder."),
    user: Optional[str] = typer.Option(None, "--user", help="User name (default: logged-in user)."),
) -> None:
    """Move a node and everything below it into another folder."""
    username = resolve_user(user)
    conn = get_connection()
    init_db(conn)
    try:
        target = services.move_node(conn, node_id, target_id, username)
        typer.echo(f"✅ Moved {node_id} into {target.name} ({target.id})")
    finally:
        conn.close()


@node_app.command("rename")
@handle_errors
def node_rename(
    node_id: str = typer.Argument(..., help="Node to rename."),
    name: str = typer.Argument(..., help="New name."),
    user: Optional[str] = typer.Option(None, "--user", help="User name (default: logged-in user)."),
) -> None:
    """Rename a node."""
    username = resolve_user(user)
    conn = get_connection()
    init_db(conn)
    try:
        node = services.rename_node(conn, node_id, name, username)
        typer.echo(f"✅ Renamed to {node.name}")
    finally:
        conn.close()


@node_app.command("delete")
@handle_errors
def node_delete(
    node_id: str = typer.Argument(..., help="Node to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a node and everything below it."""
    conn = get_connection()
    init_db(conn)
    try:
        node = services.get_node(conn, node_id)
        if not yes:
            typer.confirm(f"Delete {node.name!r} and everything below it?", abort=True)
        services.delete_node(conn, node_id)
        typer.echo(f"🗑️  Deleted {node.name} ({node.id})")
    finally:
        conn.close()
