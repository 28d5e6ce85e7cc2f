"""SQLite connection factory and transaction helper.

Usage::

    from saverestore.db.connection import get_connection, transaction

    conn = get_connection()
    with transaction(conn):
        conn.execute("UPDATE node SET name = ? WHERE id = ?", (name, node_id))
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from saverestore.config import settings


class StoreConnection(sqlite3.Connection):
    """A connection carrying the lock that serialises access to it.

    One connection is shared by every request thread, so both writers and
    readers hold ``lock`` while they talk to SQLite.  The lock is re-entrant:
    store functions can call each other inside one transaction.
    """

    def __init__(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()


def get_connection(db_path: Optional[Path] = None) -> StoreConnection:
    """Open and configure a SQLite connection.

    Steps performed on every new connection:
    1. Switch to autocommit mode; transactions are opened explicitly by
       :func:`transaction`.
    2. Enable ``PRAGMA foreign_keys = ON`` (closure rows, config rows and
       snapshot items cascade from their node).
    3. Switch to WAL journal mode for concurrent readers.

    Args:
        db_path: Override the DB path.  Defaults to ``settings.db_path``.

    Returns:
        A configured :class:`StoreConnection` with ``row_factory`` set to
        :class:`sqlite3.Row` so columns can be accessed by name.
    """
    path = db_path or settings.db_path

    # Create parent directory if needed (no-op for `:memory:`)
    if str(path) != ":memory:":
        settings.ensure_workspace()

    conn = sqlite3.connect(
        str(path),
        check_same_thread=False,
        isolation_level=None,
        factory=StoreConnection,
    )
    conn.row_factory = sqlite3.Row

    # PRAGMAs
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")

    return conn  # type: ignore[return-value]


@contextmanager
def transaction(conn: StoreConnection) -> Iterator[StoreConnection]:
    """Run the enclosed statements as one atomic, isolated transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so two
    processes mutating the same file serialise as well.  When the calling
    thread is already inside a transaction the block joins it instead of
    opening a new one.  Any exception rolls the whole transaction back.
    """
    with conn.lock:
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
