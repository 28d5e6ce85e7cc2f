"""Folder commands."""

from typing import Optional

import typer

from saverestore import services
from saverestore.db import get_connection, init_db
from cli.context import handle_errors, resolve_user

folder_app = typer.Typer(help="Manage folders.", no_args_is_help=True)


@folder_app.command("create")
@handle_errors
def folder_create(
    name: str = typer.Argument(..., help="Name of the new folder."),
    parent: Optional[str] = typer.Option(None, "--parent", help="Parent folder id (default: root)."),
    user: Optional[str] = typer.Option(None, "--user", help="User name (default: logged-in user)."),
) -> None:
    """Create a folder."""
    username = resolve_user(user)
    conn = get_connection()
    init_db(conn)
    try:
        folder = services.create_folder(conn, name, username, parent_id=parent)
        typer.echo(f"✅ Folder created: {folder.name} ({folder.id})")
    finally:
        conn.close()
