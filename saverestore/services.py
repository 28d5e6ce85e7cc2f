"""Use cases of the save & restore service.

Thin orchestration over :mod:`saverestore.db.nodes`,
:mod:`saverestore.db.snapshots` and :mod:`saverestore.capture`.  The API
routers and the CLI call these functions only; they validate user input,
log what happened and leave transactions to the store.
"""

from __future__ import annotations

import functools
import sqlite3
from time import monotonic
from typing import Iterable, Optional

from loguru import logger

from saverestore.capture import PvValueSource, capture
from saverestore.db import nodes, snapshots
from saverestore.db.models import ROOT_NODE_ID, ConfigPv, Node, NodeType, SnapshotItem
from saverestore.exceptions import (
    InvalidArgumentError,
    NodeNotFoundError,
    SaveRestoreError,
    SnapshotNotFoundError,
)


def _logs_failures(func):
    """Log domain errors raised by a use case before they propagate."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SaveRestoreError as exc:
            logger.warning("{} failed: {}", func.__name__, exc)
            raise

    return wrapper


def _require_user(username: Optional[str]) -> str:
    if not username or not username.strip():
        raise InvalidArgumentError("User name must be non-null and of non-zero length")
    return username


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@_logs_failures
def create_folder(
    conn: sqlite3.Connection,
    name: str,
    username: str,
    parent_id: Optional[str] = None,
) -> Node:
    """Create a folder; ``parent_id`` defaults to the root folder."""
    _require_user(username)
    folder = nodes.create_node(
        conn, parent_id or ROOT_NODE_ID, name, NodeType.FOLDER, username=username
    )
    logger.info("Created folder {!r} ({}) by {}", folder.name, folder.id, username)
    return folder


@_logs_failures
def create_configuration(
    conn: sqlite3.Connection,
    name: str,
    username: str,
    pvs: Iterable[ConfigPv] = (),
    description: str = "",
    parent_id: Optional[str] = None,
) -> Node:
    """Create a configuration holding ``pvs``; ``parent_id`` defaults to the root folder."""
    _require_user(username)
    config = nodes.create_node(
        conn,
        parent_id or ROOT_NODE_ID,
        name,
        NodeType.CONFIGURATION,
        username=username,
        description=description,
        pvs=pvs,
    )
    logger.info(
        "Created configuration {!r} ({}) with {} PV(s) by {}",
        config.name,
        config.id,
        len(config.pvs),
        username,
    )
    return config


@_logs_failures
def get_node(conn: sqlite3.Connection, node_id: str) -> Node:
    node = nodes.get_node(conn, node_id)
    if node is None:
        raise NodeNotFoundError(f"Node with id={node_id!r} not found")
    return node


@_logs_failures
def get_folder(conn: sqlite3.Connection, folder_id: str) -> Node:
    node = nodes.get_node(conn, folder_id)
    if node is None or node.node_type is not NodeType.FOLDER:
        raise NodeNotFoundError(f"Folder with id={folder_id!r} not found")
    return node


@_logs_failures
def get_configuration(conn: sqlite3.Connection, config_id: str) -> Node:
    node = nodes.get_node(conn, config_id)
    if node is None or node.node_type is not NodeType.CONFIGURATION:
        raise NodeNotFoundError(f"Configuration with id={config_id!r} not found")
    return node


@_logs_failures
def get_child_nodes(conn: sqlite3.Connection, node_id: str) -> list[Node]:
    return nodes.get_child_nodes(conn, node_id)


@_logs_failures
def update_configuration(
    conn: sqlite3.Connection,
    config_id: str,
    username: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    pvs: Optional[Iterable[ConfigPv]] = None,
) -> Node:
    """Update a configuration; arguments left as ``None`` are unchanged."""
    _require_user(username)
    config = nodes.update_configuration(
        conn, config_id, name=name, description=description, pvs=pvs, username=username
    )
    logger.info("Updated configuration {!r} ({}) by {}", config.name, config.id, username)
    return config


@_logs_failures
def rename_node(conn: sqlite3.Connection, node_id: str, new_name: str, username: str) -> Node:
    _require_user(username)
    node = nodes.rename_node(conn, node_id, new_name, username)
    logger.info("Renamed node {} to {!r} by {}", node_id, new_name, username)
    return node


@_logs_failures
def move_node(conn: sqlite3.Connection, node_id: str, target_id: str, username: str) -> Node:
    """Move a node under ``target_id`` and return the target folder."""
    _require_user(username)
    target = nodes.move_node(conn, node_id, target_id, username)
    logger.info("Moved node {} to {} by {}", node_id, target_id, username)
    return target


@_logs_failures
def delete_node(conn: sqlite3.Connection, node_id: str) -> None:
    nodes.delete_node(conn, node_id)
    logger.info("Deleted node {}", node_id)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@_logs_failures
def take_snapshot(
    conn: sqlite3.Connection,
    config_id: str,
    source: PvValueSource,
    username: Optional[str] = None,
    *,
    timeout: Optional[float] = None,
) -> Node:
    """Read every PV of a configuration and store the result as a preliminary snapshot.

    PVs are read with no lock held, so a configuration edited while the
    capture runs can produce a snapshot of its previous PV list.  Failed
    reads end up as items with ``fetch_status=False``; a snapshot where every
    read failed is still saved.

    Raises:
        NodeNotFoundError: ``config_id`` does not exist.
        InvalidArgumentError: ``config_id`` is not a configuration.
    """
    config = nodes.get_node(conn, config_id)
    if config is None:
        raise NodeNotFoundError(f"Config with id={config_id!r} not found")
    if config.node_type is not NodeType.CONFIGURATION:
        raise InvalidArgumentError(f"Node with id={config_id!r} is not a configuration")

    start = monotonic()
    items = capture(config, source, timeout=timeout)
    snapshot = snapshots.save_preliminary_snapshot(conn, config_id, items, username)
    logger.info(
        "Took snapshot {} of configuration {!r} ({} item(s)) in {:.0f} ms",
        snapshot.id,
        config.name,
        len(items),
        (monotonic() - start) * 1000,
    )
    return snapshot


@_logs_failures
def commit_snapshot(
    conn: sqlite3.Connection,
    snapshot_id: str,
    name: str,
    username: str,
    comment: Optional[str] = None,
) -> Node:
    _require_user(username)
    if not name or not name.strip():
        raise InvalidArgumentError("Snapshot name must be non-null and of non-zero length")
    snapshot = snapshots.commit_snapshot(conn, snapshot_id, name, username, comment)
    logger.info("Committed snapshot {} as {!r} by {}", snapshot_id, name, username)
    return snapshot


@_logs_failures
def get_snapshot(conn: sqlite3.Connection, snapshot_id: str) -> Node:
    """Return a committed snapshot; preliminary ones are not visible."""
    snapshot = snapshots.get_snapshot(conn, snapshot_id, committed_only=True)
    if snapshot is None:
        raise SnapshotNotFoundError(f"Snapshot with id={snapshot_id!r} not found")
    return snapshot


@_logs_failures
def get_snapshot_items(conn: sqlite3.Connection, snapshot_id: str) -> list[SnapshotItem]:
    return snapshots.get_snapshot_items(conn, snapshot_id)


@_logs_failures
def get_snapshots(conn: sqlite3.Connection, config_id: str) -> list[Node]:
    return snapshots.get_snapshots(conn, config_id)


@_logs_failures
def delete_snapshot(conn: sqlite3.Connection, snapshot_id: str) -> None:
    snapshots.delete_snapshot(conn, snapshot_id)
    logger.info("Deleted snapshot {}", snapshot_id)


@_logs_failures
def tag_snapshot_as_golden(conn: sqlite3.Connection, snapshot_id: str) -> Node:
    snapshot = snapshots.set_golden(conn, snapshot_id)
    logger.info(
        "Tagged snapshot {} as golden for configuration {}",
        snapshot_id,
        snapshot.snapshot.config_id if snapshot.snapshot else None,
    )
    return snapshot
