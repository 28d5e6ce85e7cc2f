"""Centralised settings for the save & restore service.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SAVERESTORE_WORKSPACE", Path.home() / ".saverestore_data")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "saverestore.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # PV capture
    # ------------------------------------------------------------------
    pv_read_timeout: float = field(
        default_factory=lambda: float(os.environ.get("PV_READ_TIMEOUT", "5.0"))
    )
    pv_read_workers: int = field(
        default_factory=lambda: int(os.environ.get("PV_READ_WORKERS", "16"))
    )
    # "package.module:attribute" of a PvValueSource (or a factory returning one).
    # Empty means the in-memory source, which fails every read it has no value for.
    pv_source: str = field(
        default_factory=lambda: os.environ.get("PV_SOURCE", "")
    )
    default_provider: str = field(
        default_factory=lambda: os.environ.get("DEFAULT_PROVIDER", "ca")
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )

    # ------------------------------------------------------------------
    # CLI
    # ------------------------------------------------------------------
    cli_config_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SAVERESTORE_CLI_DIR", Path.home() / ".saverestore_cli")
        )
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton, import this everywhere:
#   from saverestore.config import settings
settings = Settings()
