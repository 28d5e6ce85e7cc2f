"""Snapshot persistence: preliminary save, commit, lookup and golden tagging.

A snapshot is a node of type ``SNAPSHOT`` whose parent is the configuration
it was taken from.  It is first written as *preliminary* (hidden from the
tree) and becomes visible once committed with a name and a user.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Iterable, Optional

from saverestore.db.connection import transaction
from saverestore.db.models import Node, NodeType, SnapshotItem
from saverestore.db.nodes import (
    _NODE_SELECT,
    _fetch_node,
    _get_snapshot_data,
    _inflate,
    _insert_node,
    _now,
    _row_to_node,
    _validate_name,
    delete_node,
)
from saverestore.exceptions import (
    InvalidArgumentError,
    NodeNotFoundError,
    SnapshotNotFoundError,
)


def _require_configuration(conn: sqlite3.Connection, config_id: str) -> Node:
    node = _fetch_node(conn, config_id)
    if node is None:
        raise NodeNotFoundError(f"Config with id={config_id!r} not found")
    if node.node_type is not NodeType.CONFIGURATION:
        raise InvalidArgumentError(f"Node with id={config_id!r} is not a configuration")
    return node


def _snapshot_row(conn: sqlite3.Connection, snapshot_id: str) -> sqlite3.Row:
    row = conn.execute(
        "SELECT node_id, config_id, committed FROM snapshot WHERE node_id = ?",
        (snapshot_id,),
    ).fetchone()
    if row is None:
        raise SnapshotNotFoundError(f"Snapshot with id={snapshot_id!r} not found")
    return row


def save_preliminary_snapshot(
    conn: sqlite3.Connection,
    config_id: str,
    items: Iterable[SnapshotItem],
    username: Optional[str] = None,
) -> Node:
    """Persist captured items as a new preliminary snapshot of ``config_id``.

    The snapshot is named after its creation time until it is committed.
    Each item references its dedup PV row when that row still exists; the
    PV name and provider are always stored with the item.

    Raises:
        NodeNotFoundError: ``config_id`` does not exist.
        InvalidArgumentError: ``config_id`` is not a configuration.
    """
    items = list(items)
    name = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    with transaction(conn):  # type: ignore[arg-type]
        _require_configuration(conn, config_id)
        nid = _insert_node(conn, config_id, name, NodeType.SNAPSHOT, username, touch_parent=False)
        conn.execute(
            "INSERT INTO snapshot (node_id, config_id, committed, golden) VALUES (?, ?, 0, 0)",
            (nid, config_id),
        )
        conn.executemany(
            """
            INSERT INTO snapshot_item (
                snapshot_id, position, config_pv_id, pv_name, provider, fetch_status,
                data_type, value, severity, status, time, timens, sizes
            )
            VALUES (
                ?, ?, (SELECT id FROM config_pv WHERE name = ? AND provider = ?),
                ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
            )
            """,
            [_item_params(nid, position, item) for position, item in enumerate(items)],
        )
        return _inflate(conn, _fetch_node(conn, nid))  # type: ignore[arg-type]


def _item_params(snapshot_id: str, position: int, item: SnapshotItem) -> tuple:
    pv = item.config_pv
    value = item.value if item.fetch_status else None
    return (
        snapshot_id,
        position,
        pv.pv_name,
        pv.provider,
        pv.pv_name,
        pv.provider,
        1 if value is not None else 0,
        value.data_type if value else None,
        value.value_json() if value else None,
        value.alarm_severity if value else None,
        value.alarm_status if value else None,
        value.time if value else None,
        value.timens if value else None,
        json.dumps(list(value.sizes)) if value else None,
    )


def commit_snapshot(
    conn: sqlite3.Connection,
    snapshot_id: str,
    name: str,
    username: Optional[str],
    comment: Optional[str] = None,
) -> Node:
    """Give a snapshot its name, user and comment and mark it committed.

    Committing an already committed snapshot overwrites the three fields.

    Raises:
        SnapshotNotFoundError: No snapshot with that id.
    """
    _validate_name(name)
    with transaction(conn):  # type: ignore[arg-type]
        _snapshot_row(conn, snapshot_id)
        conn.execute(
            "UPDATE node SET name = ?, username = ?, updated_at = ? WHERE id = ?",
            (name, username, _now(), snapshot_id),
        )
        conn.execute(
            "UPDATE snapshot SET committed = 1, comment = ? WHERE node_id = ?",
            (comment, snapshot_id),
        )
        return _inflate(conn, _fetch_node(conn, snapshot_id))  # type: ignore[arg-type]


def get_snapshot(
    conn: sqlite3.Connection, snapshot_id: str, committed_only: bool = False
) -> Optional[Node]:
    """Return the snapshot node with its items, or ``None``."""
    with conn.lock:  # type: ignore[attr-defined]
        node = _fetch_node(conn, snapshot_id)
        if node is None or node.node_type is not NodeType.SNAPSHOT:
            return None
        node.snapshot = _get_snapshot_data(conn, snapshot_id)
        if committed_only and not (node.snapshot and node.snapshot.committed):
            return None
        return node


def get_snapshots(conn: sqlite3.Connection, config_id: str) -> list[Node]:
    """Committed snapshots of a configuration, oldest first."""
    with conn.lock:  # type: ignore[attr-defined]
        _require_configuration(conn, config_id)
        rows = conn.execute(
            _NODE_SELECT
            + """
            JOIN snapshot AS s ON s.node_id = n.id
            WHERE s.config_id = ? AND s.committed = 1
            ORDER BY n.created_at, n.rowid
            """,
            (config_id,),
        ).fetchall()
        snapshots = [_row_to_node(r) for r in rows]
        for node in snapshots:
            node.snapshot = _get_snapshot_data(conn, node.id)
        return snapshots


def get_snapshot_items(conn: sqlite3.Connection, snapshot_id: str) -> list[SnapshotItem]:
    """Raises :class:`SnapshotNotFoundError` if ``snapshot_id`` is not a snapshot."""
    with conn.lock:  # type: ignore[attr-defined]
        _snapshot_row(conn, snapshot_id)
        data = _get_snapshot_data(conn, snapshot_id)
        return data.items if data else []


def delete_snapshot(conn: sqlite3.Connection, snapshot_id: str) -> None:
    with transaction(conn):  # type: ignore[arg-type]
        _snapshot_row(conn, snapshot_id)
        delete_node(conn, snapshot_id)


def clear_golden(conn: sqlite3.Connection, config_id: str) -> None:
    """Drop the golden flag from every snapshot of ``config_id``."""
    with transaction(conn):  # type: ignore[arg-type]
        conn.execute(
            "UPDATE snapshot SET golden = 0 WHERE config_id = ? AND golden = 1",
            (config_id,),
        )


def set_golden(conn: sqlite3.Connection, snapshot_id: str) -> Node:
    """Make ``snapshot_id`` the one golden snapshot of its configuration.

    Only committed snapshots can be golden.  Tagging the current golden
    snapshot again is a no-op.

    Raises:
        SnapshotNotFoundError: No committed snapshot with that id.
    """
    with transaction(conn):  # type: ignore[arg-type]
        row = _snapshot_row(conn, snapshot_id)
        if not row["committed"]:
            raise SnapshotNotFoundError(
                f"Snapshot with id={snapshot_id!r} is not committed"
            )
        clear_golden(conn, row["config_id"])
        conn.execute("UPDATE snapshot SET golden = 1 WHERE node_id = ?", (snapshot_id,))
        return _inflate(conn, _fetch_node(conn, snapshot_id))  # type: ignore[arg-type]
