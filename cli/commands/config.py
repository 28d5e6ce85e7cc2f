"""Configuration commands."""

from typing import List, Optional

import typer

from saverestore import services
from saverestore.config import settings
from saverestore.db import get_connection, init_db
from saverestore.db.models import ConfigPv
from cli.context import handle_errors, resolve_user

config_app = typer.Typer(help="Manage PV configurations.", no_args_is_help=True)


def _parse_pvs(pvs: List[str], provider: str) -> List[ConfigPv]:
    """Accept ``NAME`` or ``provider://NAME`` for each --pv value."""
    parsed = []
    for pv in pvs:
        if "://" in pv:
            prov, _, name = pv.partition("://")
            parsed.append(ConfigPv(pv_name=name, provider=prov))
        else:
            parsed.append(ConfigPv(pv_name=pv, provider=provider))
    return parsed


@config_app.command("create")
@handle_errors
def config_create(
    name: str = typer.Argument(..., help="Name of the new configuration."),
    pv: List[str] = typer.Option([], "--pv", help="PV name, repeatable. 'pva://NAME' picks a provider."),
    provider: str = typer.Option(settings.default_provider, "--provider", help="Provider for bare PV names."),
    description: str = typer.Option("", "--description", "-d"),
    parent: Optional[str] = typer.Option(None, "--parent", help="Parent folder id (default: root)."),
    user: Optional[str] = typer.Option(None, "--user", help="User name (default: logged-in user)."),
) -> None:
    """Create a configuration holding the given PVs."""
    username = resolve_user(user)
    conn = get_connection()
    init_db(conn)
    try:
        config = services.create_configuration(
            conn,
            name,
            username,
            pvs=_parse_pvs(pv, provider),
            description=description,
            parent_id=parent,
        )
        typer.echo(f"✅ Configuration created: {config.name} ({config.id}) with {len(config.pvs)} PV(s)")
    finally:
        conn.close()


@config_app.command("show")
@handle_errors
def config_show(
    config_id: str = typer.Argument(..., help="Configuration id."),
) -> None:
    """Print a configuration and its PV list."""
    conn = get_connection()
    init_db(conn)
    try:
        config = services.get_configuration(conn, config_id)
        typer.echo(f"{config.name} [{config.id}]")
        if config.configuration and config.configuration.description:
            typer.echo(f"  {config.configuration.description}")
        typer.echo(f"  last modified by {config.username or '-'}")
        for p in config.pvs:
            typer.echo(f"  - {p.provider}://{p.pv_name}")
    finally:
        conn.close()
