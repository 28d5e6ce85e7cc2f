"""Persistent state for the save & restore CLI.

Remembers the user name changes are recorded under, so it does not have to
be passed to every command.  Stored in `~/.saverestore_cli/context.json`.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional

import typer

from saverestore.config import settings
from saverestore.exceptions import SaveRestoreError


@dataclass
class CliContext:
    username: Optional[str] = None
    user_preferences: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    @classmethod
    def from_json(cls, data: str) -> CliContext:
        try:
            raw = json.loads(data)
            return cls(**raw)
        except (json.JSONDecodeError, TypeError):
            return cls()


def _get_context_path() -> Path:
    """Return the path to the context JSON file."""
    return settings.cli_config_dir / "context.json"


def load_context() -> CliContext:
    """Load the CLI context from disk. Returns defaults if missing or corrupt."""
    path = _get_context_path()
    if not path.exists():
        return CliContext()
    try:
        return CliContext.from_json(path.read_text(encoding="utf-8"))
    except OSError:
        return CliContext()


def save_context(ctx: CliContext) -> None:
    """Save the CLI context to disk."""
    settings.cli_config_dir.mkdir(parents=True, exist_ok=True)
    _get_context_path().write_text(ctx.to_json(), encoding="utf-8")


def resolve_user(username: Optional[str]) -> str:
    """Return ``username`` or the logged-in user; abort if neither is set."""
    user = username or load_context().username
    if not user:
        typer.echo("❌ No user name given.")
        typer.echo("Pass --user <name> or run 'login <name>' first.")
        raise typer.Exit(code=1)
    return user


def handle_errors(func: Callable) -> Callable:
    """Decorator turning domain errors into a message and exit code 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SaveRestoreError as exc:
            typer.echo(f"❌ {exc}")
            raise typer.Exit(code=1)

    return wrapper
