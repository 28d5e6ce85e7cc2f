"""Database layer package.

Public re-exports so callers can write::

    from saverestore.db import get_connection, init_db, transaction
    from saverestore.db import nodes, snapshots
"""

from saverestore.db.connection import get_connection, transaction
from saverestore.db.migrations import init_db
from saverestore.db import nodes, snapshots

__all__ = ["get_connection", "init_db", "transaction", "nodes", "snapshots"]
