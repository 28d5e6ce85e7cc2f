"""Hierarchical node store on top of the ``node`` / ``node_closure`` tables.

The tree is kept as a closure table: for every node there is one row per
ancestor (including the node itself at depth 0), so "all descendants of X"
and "path from X to the root" are both single queries.  The parent of a node
is its depth-1 ancestor.

Every mutation runs inside :func:`~saverestore.db.connection.transaction`;
reads hold the connection lock so they never see half-applied changes.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from time import time
from typing import Iterable, Optional

from saverestore.db.connection import transaction
from saverestore.db.models import (
    ROOT_NODE_ID,
    ConfigPv,
    ConfigurationData,
    Node,
    NodeType,
    PvValue,
    SnapshotData,
    SnapshotItem,
)
from saverestore.exceptions import (
    InvalidArgumentError,
    InvalidParentError,
    NameClashError,
    NodeNotFoundError,
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_NODE_SELECT = """
    SELECT n.id, n.name, n.type, n.created_at, n.updated_at, n.username,
           p.ancestor AS parent_id
    FROM   node AS n
    LEFT JOIN node_closure AS p ON p.descendant = n.id AND p.depth = 1
"""

# Preliminary snapshots are not part of the visible tree.
_VISIBLE = """
    NOT EXISTS (SELECT 1 FROM snapshot AS s WHERE s.node_id = n.id AND s.committed = 0)
"""


def _now() -> int:
    return int(time() * 1000)


def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        name=row["name"],
        node_type=NodeType(row["type"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        username=row["username"],
        parent_id=row["parent_id"],
    )


def _row_to_item(row: sqlite3.Row) -> SnapshotItem:
    config_pv = ConfigPv(
        pv_name=row["pv_name"], provider=row["provider"], id=row["config_pv_id"]
    )
    if not row["fetch_status"]:
        return SnapshotItem(config_pv=config_pv, fetch_status=False)
    value = PvValue(
        value=json.loads(row["value"]),
        alarm_severity=row["severity"],
        alarm_status=row["status"],
        time=row["time"],
        timens=row["timens"],
        sizes=tuple(json.loads(row["sizes"] or "[]")),
        data_type=row["data_type"],
    )
    return SnapshotItem(config_pv=config_pv, fetch_status=True, value=value)


def _validate_name(name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise InvalidArgumentError("Node name must be non-null and of non-zero length")
    return name


def _unique_pvs(pvs: Iterable[ConfigPv]) -> list[ConfigPv]:
    """Drop repeated (name, provider) pairs, keeping the first occurrence."""
    seen: set[ConfigPv] = set()
    unique: list[ConfigPv] = []
    for pv in pvs:
        if not pv.pv_name or not pv.pv_name.strip():
            raise InvalidArgumentError("PV name must be of non-zero length")
        if pv not in seen:
            seen.add(pv)
            unique.append(pv)
    return unique


def _fetch_node(conn: sqlite3.Connection, node_id: str) -> Optional[Node]:
    """Return the bare node row (no payload), or ``None``."""
    row = conn.execute(_NODE_SELECT + " WHERE n.id = ?", (node_id,)).fetchone()
    return _row_to_node(row) if row else None


def _require_node(conn: sqlite3.Connection, node_id: str) -> Node:
    node = _fetch_node(conn, node_id)
    if node is None:
        raise NodeNotFoundError(f"Node with id={node_id!r} not found")
    return node


def _child_nodes(conn: sqlite3.Connection, node_id: str) -> list[Node]:
    rows = conn.execute(
        _NODE_SELECT
        + """
        JOIN node_closure AS c ON c.descendant = n.id
        WHERE c.ancestor = ? AND c.depth = 1 AND """
        + _VISIBLE
        + " ORDER BY n.type, n.name",
        (node_id,),
    ).fetchall()
    return [_row_to_node(r) for r in rows]


def _touch(
    conn: sqlite3.Connection,
    node_ids: Iterable[Optional[str]],
    username: Optional[str] = None,
) -> None:
    """Refresh ``updated_at`` (and ``username`` when given) on the nodes."""
    now = _now()
    for node_id in {n for n in node_ids if n is not None}:
        if username is None:
            conn.execute("UPDATE node SET updated_at = ? WHERE id = ?", (now, node_id))
        else:
            conn.execute(
                "UPDATE node SET updated_at = ?, username = ? WHERE id = ?",
                (now, username, node_id),
            )


def _insert_node(
    conn: sqlite3.Connection,
    parent_id: str,
    name: str,
    node_type: NodeType,
    username: Optional[str],
    touch_parent: bool = True,
) -> str:
    """Insert a node row plus its closure rows under ``parent_id``.

    The new node gets its self row at depth 0 and one row per ancestor of the
    parent (the parent's own self row included) at that ancestor's depth + 1.
    """
    nid = str(uuid.uuid4())
    now = _now()
    conn.execute(
        """
        INSERT INTO node (id, name, type, created_at, updated_at, username)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (nid, name, node_type.value, now, now, username),
    )
    conn.execute(
        """
        INSERT INTO node_closure (ancestor, descendant, depth)
        SELECT ancestor, ?, depth + 1 FROM node_closure WHERE descendant = ?
        UNION ALL
        SELECT ?, ?, 0
        """,
        (nid, parent_id, nid, nid),
    )
    if touch_parent:
        _touch(conn, [parent_id], username)
    return nid


def _pv_id(conn: sqlite3.Connection, pv: ConfigPv) -> Optional[int]:
    row = conn.execute(
        "SELECT id FROM config_pv WHERE name = ? AND provider = ?",
        (pv.pv_name, pv.provider),
    ).fetchone()
    return row[0] if row else None


def _save_config_pv(
    conn: sqlite3.Connection, config_id: str, pv: ConfigPv, position: int
) -> None:
    """Associate ``pv`` with the configuration, creating its dedup row if new."""
    conn.execute(
        "INSERT OR IGNORE INTO config_pv (name, provider) VALUES (?, ?)",
        (pv.pv_name, pv.provider),
    )
    conn.execute(
        """
        INSERT INTO config_pv_relation (config_id, config_pv_id, position)
        VALUES (?, ?, ?)
        """,
        (config_id, _pv_id(conn, pv), position),
    )


def _get_config_pvs(conn: sqlite3.Connection, config_id: str) -> list[ConfigPv]:
    rows = conn.execute(
        """
        SELECT pv.id, pv.name, pv.provider
        FROM   config_pv AS pv
        JOIN   config_pv_relation AS r ON r.config_pv_id = pv.id
        WHERE  r.config_id = ?
        ORDER BY r.position
        """,
        (config_id,),
    ).fetchall()
    return [ConfigPv(pv_name=r["name"], provider=r["provider"], id=r["id"]) for r in rows]


def _delete_orphaned_pvs(conn: sqlite3.Connection, pv_ids: Iterable[int]) -> None:
    """Delete dedup PV rows no configuration references any more."""
    for pv_id in pv_ids:
        conn.execute(
            """
            DELETE FROM config_pv
            WHERE id = ?
              AND NOT EXISTS (SELECT 1 FROM config_pv_relation WHERE config_pv_id = ?)
            """,
            (pv_id, pv_id),
        )


def _get_snapshot_data(conn: sqlite3.Connection, node_id: str) -> Optional[SnapshotData]:
    row = conn.execute(
        "SELECT config_id, committed, comment, golden FROM snapshot WHERE node_id = ?",
        (node_id,),
    ).fetchone()
    if row is None:
        return None
    items = conn.execute(
        "SELECT * FROM snapshot_item WHERE snapshot_id = ? ORDER BY position",
        (node_id,),
    ).fetchall()
    return SnapshotData(
        config_id=row["config_id"],
        committed=bool(row["committed"]),
        comment=row["comment"],
        golden=bool(row["golden"]),
        items=[_row_to_item(r) for r in items],
    )


def _inflate(conn: sqlite3.Connection, node: Node) -> Node:
    """Attach the type-specific payload to a bare node."""
    if node.node_type is NodeType.FOLDER:
        node.children = _child_nodes(conn, node.id)
    elif node.node_type is NodeType.CONFIGURATION:
        row = conn.execute(
            "SELECT description FROM config WHERE node_id = ?", (node.id,)
        ).fetchone()
        node.configuration = ConfigurationData(
            description=row["description"] if row else "",
            pvs=_get_config_pvs(conn, node.id),
        )
    else:
        node.snapshot = _get_snapshot_data(conn, node.id)
    return node


def _delete_configuration(conn: sqlite3.Connection, config_id: str) -> None:
    pv_ids = [
        r[0]
        for r in conn.execute(
            "SELECT config_pv_id FROM config_pv_relation WHERE config_id = ?",
            (config_id,),
        ).fetchall()
    ]
    snapshot_ids = [
        r[0]
        for r in conn.execute(
            "SELECT descendant FROM node_closure WHERE ancestor = ? AND depth > 0",
            (config_id,),
        ).fetchall()
    ]
    # Snapshot rows and their items cascade from the snapshot nodes.
    conn.executemany("DELETE FROM node WHERE id = ?", [(s,) for s in snapshot_ids])
    conn.execute("DELETE FROM config_pv_relation WHERE config_id = ?", (config_id,))
    conn.execute("DELETE FROM node WHERE id = ?", (config_id,))
    _delete_orphaned_pvs(conn, pv_ids)


def _delete_subtree(conn: sqlite3.Connection, node: Node) -> None:
    if node.node_type is NodeType.CONFIGURATION:
        _delete_configuration(conn, node.id)
        return
    if node.node_type is NodeType.FOLDER:
        for child in _child_nodes(conn, node.id):
            _delete_subtree(conn, child)
    conn.execute("DELETE FROM node WHERE id = ?", (node.id,))


# ---------------------------------------------------------------------------
# Public API: lookups
# ---------------------------------------------------------------------------

def get_node(conn: sqlite3.Connection, node_id: str) -> Optional[Node]:
    """Fetch a node by id, inflated with its type-specific payload.

    Folders come with their direct (visible) children, configurations with
    their ordered PV list and snapshots with their state and items.  Returns
    ``None`` if the id does not exist.
    """
    with conn.lock:  # type: ignore[attr-defined]
        node = _fetch_node(conn, node_id)
        return _inflate(conn, node) if node else None


def get_child_nodes(conn: sqlite3.Connection, node_id: str) -> list[Node]:
    """Return the direct children of a node.

    Raises:
        NodeNotFoundError: If ``node_id`` does not exist.
    """
    with conn.lock:  # type: ignore[attr-defined]
        _require_node(conn, node_id)
        return _child_nodes(conn, node_id)


def get_parent_id(conn: sqlite3.Connection, node_id: str) -> Optional[str]:
    """Return the id of the depth-1 ancestor; ``None`` for the root or a missing node."""
    with conn.lock:  # type: ignore[attr-defined]
        row = conn.execute(
            "SELECT ancestor FROM node_closure WHERE descendant = ? AND depth = 1",
            (node_id,),
        ).fetchone()
    return row[0] if row else None


def get_ancestors(conn: sqlite3.Connection, node_id: str) -> list[tuple[str, int]]:
    """Return ``(ancestor_id, depth)`` pairs from the node itself up to the root."""
    with conn.lock:  # type: ignore[attr-defined]
        rows = conn.execute(
            "SELECT ancestor, depth FROM node_closure WHERE descendant = ? ORDER BY depth",
            (node_id,),
        ).fetchall()
    return [(r[0], r[1]) for r in rows]


def get_descendants(conn: sqlite3.Connection, node_id: str) -> list[tuple[str, int]]:
    """Return ``(descendant_id, depth)`` pairs of the subtree, the node itself first."""
    with conn.lock:  # type: ignore[attr-defined]
        rows = conn.execute(
            "SELECT descendant, depth FROM node_closure WHERE ancestor = ? ORDER BY depth, descendant",
            (node_id,),
        ).fetchall()
    return [(r[0], r[1]) for r in rows]


def does_name_clash(
    conn: sqlite3.Connection,
    parent_id: Optional[str],
    name: str,
    node_type: NodeType,
    exclude_id: Optional[str] = None,
) -> bool:
    """Return ``True`` if ``parent_id`` already holds a child of that name and type."""
    if parent_id is None:
        return False
    with conn.lock:  # type: ignore[attr-defined]
        row = conn.execute(
            """
            SELECT 1
            FROM   node AS n
            JOIN   node_closure AS c ON c.descendant = n.id
            WHERE  c.ancestor = ? AND c.depth = 1
              AND  n.name = ? AND n.type = ? AND n.id != ?
            LIMIT 1
            """,
            (parent_id, name, node_type.value, exclude_id or ""),
        ).fetchone()
    return row is not None


# ---------------------------------------------------------------------------
# Public API: mutations
# ---------------------------------------------------------------------------

def create_node(
    conn: sqlite3.Connection,
    parent_id: str,
    name: str,
    node_type: NodeType,
    username: Optional[str] = None,
    description: str = "",
    pvs: Optional[Iterable[ConfigPv]] = None,
) -> Node:
    """Insert a new folder or configuration under ``parent_id`` and return it.

    Args:
        conn: Open DB connection.
        parent_id: Id of an existing folder.
        name: Display name; must be unique among siblings of the same type.
        node_type: ``FOLDER`` or ``CONFIGURATION``.  Snapshots are created by
            :func:`saverestore.db.snapshots.save_preliminary_snapshot` only.
        username: User performing the change.
        description: Configuration description (ignored for folders).
        pvs: Configuration PV list (ignored for folders).

    Raises:
        InvalidParentError: Parent missing or not a folder.
        InvalidArgumentError: Empty name or snapshot node type.
        NameClashError: Sibling with same name and type exists.
    """
    _validate_name(name)
    if node_type is NodeType.SNAPSHOT:
        raise InvalidArgumentError("Snapshot nodes can only be created by taking a snapshot")
    unique_pvs = _unique_pvs(pvs or [])

    with transaction(conn):  # type: ignore[arg-type]
        parent = _fetch_node(conn, parent_id)
        if parent is None:
            raise InvalidParentError(
                f"Cannot create new node as parent id={parent_id!r} does not exist"
            )
        if parent.node_type is not NodeType.FOLDER:
            raise InvalidParentError(f"Parent node id={parent_id!r} is not a folder")
        if does_name_clash(conn, parent_id, name, node_type):
            raise NameClashError(
                f"A {node_type.value.lower()} named {name!r} already exists in the parent folder"
            )

        nid = _insert_node(conn, parent_id, name, node_type, username)
        if node_type is NodeType.CONFIGURATION:
            conn.execute(
                "INSERT INTO config (node_id, description) VALUES (?, ?)",
                (nid, description or ""),
            )
            for position, pv in enumerate(unique_pvs):
                _save_config_pv(conn, nid, pv, position)

        return _inflate(conn, _require_node(conn, nid))


def rename_node(
    conn: sqlite3.Connection, node_id: str, new_name: str, username: Optional[str] = None
) -> Node:
    """Change the display name of a node.

    Raises:
        InvalidArgumentError: ``node_id`` is the root, or the name is empty.
        NodeNotFoundError: ``node_id`` does not exist.
        NameClashError: Another sibling of the same type already has that name.
    """
    if node_id == ROOT_NODE_ID:
        raise InvalidArgumentError("Cannot change name of root folder")
    _validate_name(new_name)

    with transaction(conn):  # type: ignore[arg-type]
        node = _require_node(conn, node_id)
        if does_name_clash(conn, node.parent_id, new_name, node.node_type, exclude_id=node_id):
            raise NameClashError(
                "Cannot change name of node as an existing node with same name and type exists"
            )
        conn.execute(
            "UPDATE node SET name = ?, updated_at = ?, username = ? WHERE id = ?",
            (new_name, _now(), username, node_id),
        )
        return _inflate(conn, _require_node(conn, node_id))


def move_node(
    conn: sqlite3.Connection,
    node_id: str,
    new_parent_id: str,
    username: Optional[str] = None,
) -> Node:
    """Re-parent ``node_id`` (with its whole subtree) under ``new_parent_id``.

    The subtree is first detached from every strict ancestor of the moved
    node, keeping its internal closure rows, then re-attached with the cross
    product of the target's ancestors (target included) and the subtree's
    nodes.

    Returns:
        The target folder, inflated with its children.

    Raises:
        NodeNotFoundError: Either id does not exist.
        InvalidArgumentError: Root or snapshot as source, non-folder target,
            or a target inside the moved subtree.
        NameClashError: Target already holds a node of same name and type.
    """
    with transaction(conn):  # type: ignore[arg-type]
        node = _fetch_node(conn, node_id)
        if node is None:
            raise NodeNotFoundError(f"Source node with id={node_id!r} not found")
        target = _fetch_node(conn, new_parent_id)
        if target is None:
            raise NodeNotFoundError(f"Target node with id={new_parent_id!r} not found")
        if node.is_root:
            raise InvalidArgumentError("Root folder cannot be moved")
        if node.node_type is NodeType.SNAPSHOT:
            raise InvalidArgumentError("Snapshots cannot be moved away from their configuration")
        if target.node_type is not NodeType.FOLDER:
            raise InvalidArgumentError(f"Target node id={new_parent_id!r} is not a folder")
        inside = conn.execute(
            "SELECT 1 FROM node_closure WHERE ancestor = ? AND descendant = ?",
            (node_id, new_parent_id),
        ).fetchone()
        if inside:
            raise InvalidArgumentError("A node cannot be moved into its own subtree")
        if does_name_clash(conn, new_parent_id, node.name, node.node_type, exclude_id=node_id):
            raise NameClashError("Node of same name and type already exists in target node")

        conn.execute(
            """
            DELETE FROM node_closure
            WHERE descendant IN (SELECT descendant FROM node_closure WHERE ancestor = ?)
              AND ancestor IN (SELECT ancestor FROM node_closure
                               WHERE descendant = ? AND ancestor != descendant)
            """,
            (node_id, node_id),
        )
        conn.execute(
            """
            INSERT INTO node_closure (ancestor, descendant, depth)
            SELECT supertree.ancestor, subtree.descendant, supertree.depth + subtree.depth + 1
            FROM   node_closure AS supertree
            CROSS JOIN node_closure AS subtree
            WHERE  supertree.descendant = ? AND subtree.ancestor = ?
            """,
            (new_parent_id, node_id),
        )
        _touch(conn, [node.parent_id, new_parent_id, node_id], username)

        return _inflate(conn, _require_node(conn, new_parent_id))


def delete_node(conn: sqlite3.Connection, node_id: str) -> None:
    """Delete a node and everything below it.

    Configurations take their snapshots and PV associations with them and
    orphaned PVs are garbage-collected; folders delete their children depth
    first.  The former parent's ``updated_at`` is refreshed.

    Raises:
        InvalidArgumentError: ``node_id`` is the root.
        NodeNotFoundError: ``node_id`` does not exist.
    """
    if node_id == ROOT_NODE_ID:
        raise InvalidArgumentError("Root node cannot be deleted")

    with transaction(conn):  # type: ignore[arg-type]
        node = _require_node(conn, node_id)
        _delete_subtree(conn, node)
        _touch(conn, [node.parent_id])


def update_configuration(
    conn: sqlite3.Connection,
    config_id: str,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    pvs: Optional[Iterable[ConfigPv]] = None,
    username: Optional[str] = None,
) -> Node:
    """Update name, description and/or PV list of a configuration.

    Arguments left as ``None`` keep their stored value.  The PV list is
    applied as a symmetric difference: dropped PVs lose their association
    (and their dedup row once nothing references it), new PVs are associated,
    kept PVs are reordered to match ``pvs``.  Existing snapshots keep their
    items.

    Raises:
        NodeNotFoundError: ``config_id`` does not exist.
        InvalidArgumentError: ``config_id`` is not a configuration.
        NameClashError: The new name clashes with a sibling configuration.
    """
    if name is not None:
        _validate_name(name)
    wanted = _unique_pvs(pvs) if pvs is not None else None

    with transaction(conn):  # type: ignore[arg-type]
        node = _fetch_node(conn, config_id)
        if node is None:
            raise NodeNotFoundError(f"Config with id={config_id!r} not found")
        if node.node_type is not NodeType.CONFIGURATION:
            raise InvalidArgumentError(f"Node with id={config_id!r} is not a configuration")

        if name is not None and name != node.name:
            if does_name_clash(conn, node.parent_id, name, node.node_type, exclude_id=config_id):
                raise NameClashError(f"A configuration named {name!r} already exists")
            conn.execute("UPDATE node SET name = ? WHERE id = ?", (name, config_id))

        if description is not None:
            conn.execute(
                "UPDATE config SET description = ? WHERE node_id = ?", (description, config_id)
            )

        if wanted is not None:
            existing = _get_config_pvs(conn, config_id)
            to_remove = [pv for pv in existing if pv not in wanted]
            to_add = [pv for pv in wanted if pv not in existing]

            removed_ids = [pv.id for pv in to_remove if pv.id is not None]
            conn.executemany(
                "DELETE FROM config_pv_relation WHERE config_id = ? AND config_pv_id = ?",
                [(config_id, pv_id) for pv_id in removed_ids],
            )
            _delete_orphaned_pvs(conn, removed_ids)

            for pv in to_add:
                _save_config_pv(conn, config_id, pv, len(wanted))
            for position, pv in enumerate(wanted):
                conn.execute(
                    """
                    UPDATE config_pv_relation SET position = ?
                    WHERE config_id = ? AND config_pv_id = ?
                    """,
                    (position, config_id, _pv_id(conn, pv)),
                )

        _touch(conn, [config_id], username)
        return _inflate(conn, _require_node(conn, config_id))
