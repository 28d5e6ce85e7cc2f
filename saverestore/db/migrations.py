"""Database initialisation helpers.

``init_db(conn)`` is idempotent, safe to call on an existing database.
``current_version(conn)`` reads the version table it maintains.
"""

from __future__ import annotations

import sqlite3
from time import time

from saverestore.config import settings
from saverestore.db.connection import transaction
from saverestore.db.models import ROOT_NODE_ID, ROOT_NODE_NAME, NodeType


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _read_schema() -> str:
    """Load the bundled schema.sql."""
    return settings.schema_path.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes, then make sure the root folder exists.

    This function is **idempotent**: every DDL statement uses ``IF NOT EXISTS``
    and the root folder is only inserted when missing, so calling it multiple
    times on the same database is safe.

    Args:
        conn: An open, configured SQLite connection.
    """
    with conn.lock:  # type: ignore[attr-defined]
        # executescript() handles multi-statement scripts.  It issues an
        # implicit COMMIT before execution, which is fine for DDL-only scripts.
        conn.executescript(_read_schema())
    _ensure_root(conn)
    _ensure_version_table(conn)


def _ensure_root(conn: sqlite3.Connection) -> None:
    """Insert the root folder and its closure self row if absent."""
    now = int(time() * 1000)
    with transaction(conn):  # type: ignore[arg-type]
        conn.execute(
            """
            INSERT OR IGNORE INTO node (id, name, type, created_at, updated_at, username)
            VALUES (?, ?, ?, ?, ?, NULL)
            """,
            (ROOT_NODE_ID, ROOT_NODE_NAME, NodeType.FOLDER.value, now, now),
        )
        conn.execute(
            "INSERT OR IGNORE INTO node_closure (ancestor, descendant, depth) VALUES (?, ?, 0)",
            (ROOT_NODE_ID, ROOT_NODE_ID),
        )


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the internal schema-version tracking table if absent."""
    with transaction(conn):  # type: ignore[arg-type]
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version  INTEGER PRIMARY KEY,
                applied_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
            )
            """
        )


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest recorded schema version (0 if none)."""
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) FROM schema_version"
    ).fetchone()
    return row[0] if row else 0

