"""Snapshot commands."""

from typing import Optional

import typer

from saverestore import services
from saverestore.capture import load_pv_source
from saverestore.config import settings
from saverestore.db import get_connection, init_db
from cli.context import handle_errors, resolve_user

snapshot_app = typer.Typer(help="Take, commit and browse snapshots.", no_args_is_help=True)


@snapshot_app.command("take")
@handle_errors
def snapshot_take(
    config_id: str = typer.Argument(..., help="Configuration to snapshot."),
    name: Optional[str] = typer.Option(None, "--name", help="Commit right away under this name."),
    comment: Optional[str] = typer.Option(None, "--comment"),
    user: Optional[str] = typer.Option(None, "--user", help="User name (default: logged-in user)."),
) -> None:
    """Read every PV of a configuration and save the values."""
    username = resolve_user(user)
    source = load_pv_source(settings.pv_source)
    conn = get_connection()
    init_db(conn)
    try:
        snapshot = services.take_snapshot(conn, config_id, source, username)
        failed = [i for i in snapshot.items if not i.fetch_status]
        typer.echo(f"📷 Snapshot taken: {snapshot.id} ({len(snapshot.items)} PV(s), {len(failed)} failed)")
        for item in failed:
            typer.echo(f"  ✗ {item.config_pv.provider}://{item.config_pv.pv_name}")
        if name:
            services.commit_snapshot(conn, snapshot.id, name, username, comment)
            typer.echo(f"✅ Committed as {name}")
    finally:
        conn.close()


@snapshot_app.command("commit")
@handle_errors
def snapshot_commit(
    snapshot_id: str = typer.Argument(..., help="Snapshot id."),
    name: str = typer.Argument(..., help="Snapshot name."),
    comment: Optional[str] = typer.Option(None, "--comment"),
    user: Optional[str] = typer.Option(None, "--user", help="User name (default: logged-in user)."),
) -> None:
    """Name a preliminary snapshot and make it visible."""
    username = resolve_user(user)
    conn = get_connection()
    init_db(conn)
    try:
        snapshot = services.commit_snapshot(conn, snapshot_id, name, username, comment)
        typer.echo(f"✅ Committed as {snapshot.name}")
    finally:
        conn.close()


@snapshot_app.command("list")
@handle_errors
def snapshot_list(
    config_id: str = typer.Argument(..., help="Configuration id."),
) -> None:
    """List the committed snapshots of a configuration."""
    conn = get_connection()
    init_db(conn)
    try:
        snapshots = services.get_snapshots(conn, config_id)
        if not snapshots:
            typer.echo("No snapshots found.")
            return
        for s in snapshots:
            marker = "★" if s.snapshot and s.snapshot.golden else " "
            typer.echo(f"{marker} {s.name} \t[{s.id}]  by {s.username}")
    finally:
        conn.close()


@snapshot_app.command("show")
@handle_errors
def snapshot_show(
    snapshot_id: str = typer.Argument(..., help="Snapshot id."),
) -> None:
    """Print the values stored in a committed snapshot."""
    conn = get_connection()
    init_db(conn)
    try:
        snapshot = services.get_snapshot(conn, snapshot_id)
        typer.echo(f"{snapshot.name} [{snapshot.id}]")
        for item in snapshot.items:
            address = f"{item.config_pv.provider}://{item.config_pv.pv_name}"
            if item.value is None:
                typer.echo(f"  {address}  <not read>")
            else:
                typer.echo(f"  {address}  {item.value.value!r}  {item.value.alarm_severity}")
    finally:
        conn.close()


@snapshot_app.command("golden")
@handle_errors
def snapshot_golden(
    snapshot_id: str = typer.Argument(..., help="Snapshot id."),
) -> None:
    """Tag a committed snapshot as the golden one of its configuration."""
    conn = get_connection()
    init_db(conn)
    try:
        snapshot = services.tag_snapshot_as_golden(conn, snapshot_id)
        typer.echo(f"★ {snapshot.name} is now the golden snapshot")
    finally:
        conn.close()
