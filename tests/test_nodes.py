"""Node store tests: create, lookup, rename, move, delete, configuration updates.

Every test runs against a fresh in-memory database.
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Generator

import pytest

from saverestore.db.connection import get_connection
from saverestore.db.migrations import init_db
from saverestore.db.models import ROOT_NODE_ID, ConfigPv, Node, NodeType
from saverestore.db.nodes import (
    create_node,
    delete_node,
    does_name_clash,
    get_ancestors,
    get_child_nodes,
    get_descendants,
    get_node,
    get_parent_id,
    move_node,
    rename_node,
    update_configuration,
)
from saverestore.exceptions import (
    InvalidArgumentError,
    InvalidParentError,
    NameClashError,
    NodeNotFoundError,
)


# ---------------------------------------------------------------------------
# Fixtures & helpers
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


def _folder(conn, name: str, parent: str = ROOT_NODE_ID, user: str = "alice") -> Node:
    return create_node(conn, parent, name, NodeType.FOLDER, username=user)


def _config(conn, name: str, pvs: list[str], parent: str = ROOT_NODE_ID) -> Node:
    return create_node(
        conn,
        parent,
        name,
        NodeType.CONFIGURATION,
        username="alice",
        pvs=[ConfigPv(p) for p in pvs],
    )


def _pv_names(conn) -> set[str]:
    return {r[0] for r in conn.execute("SELECT name FROM config_pv").fetchall()}


def _assert_closure_consistent(conn) -> None:
    """Every node has a self row, one row per ancestor and a single parent."""
    for (node_id,) in conn.execute("SELECT id FROM node").fetchall():
        ancestors = get_ancestors(conn, node_id)
        depths = [d for _, d in ancestors]
        assert depths == list(range(len(ancestors)))
        assert ancestors[0] == (node_id, 0)
        assert ancestors[-1][0] == ROOT_NODE_ID


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------

class TestCreateNode:
    def test_create_folder_under_root(self, conn) -> None:
        folder = _folder(conn, "f1")
        assert folder.parent_id == ROOT_NODE_ID
        assert folder.node_type is NodeType.FOLDER
        assert folder.username == "alice"
        assert get_ancestors(conn, folder.id) == [(folder.id, 0), (ROOT_NODE_ID, 1)]

    def test_nested_closure_depths(self, conn) -> None:
        f1 = _folder(conn, "f1")
        f2 = _folder(conn, "f2", parent=f1.id)
        config = _config(conn, "c", ["a"], parent=f2.id)
        assert get_ancestors(conn, config.id) == [
            (config.id, 0),
            (f2.id, 1),
            (f1.id, 2),
            (ROOT_NODE_ID, 3),
        ]
        assert [d for _, d in get_descendants(conn, f1.id)] == [0, 1, 2]
        _assert_closure_consistent(conn)

    def test_create_configuration_with_pvs(self, conn) -> None:
        config = create_node(
            conn,
            ROOT_NODE_ID,
            "config",
            NodeType.CONFIGURATION,
            username="alice",
            description="ring",
            pvs=[ConfigPv("a"), ConfigPv("b", provider="pva")],
        )
        assert config.configuration is not None
        assert config.configuration.description == "ring"
        assert config.pvs == [ConfigPv("a"), ConfigPv("b", provider="pva")]
        assert all(pv.id is not None for pv in config.pvs)

    def test_duplicate_pvs_collapsed(self, conn) -> None:
        config = _config(conn, "config", ["a", "a", "b"])
        assert [pv.pv_name for pv in config.pvs] == ["a", "b"]

    def test_pvs_shared_between_configurations(self, conn) -> None:
        c1 = _config(conn, "c1", ["a", "b"])
        c2 = _config(conn, "c2", ["b", "c"])
        assert _pv_names(conn) == {"a", "b", "c"}
        assert c1.pvs[1].id == c2.pvs[0].id

    def test_name_clash_same_type(self, conn) -> None:
        _folder(conn, "dup")
        with pytest.raises(NameClashError):
            _folder(conn, "dup")
        assert len(get_child_nodes(conn, ROOT_NODE_ID)) == 1

    def test_same_name_different_type_allowed(self, conn) -> None:
        _folder(conn, "same")
        _config(conn, "same", [])
        assert len(get_child_nodes(conn, ROOT_NODE_ID)) == 2

    def test_same_name_different_parent_allowed(self, conn) -> None:
        f1 = _folder(conn, "f1")
        _folder(conn, "x")
        _folder(conn, "x", parent=f1.id)

    def test_missing_parent(self, conn) -> None:
        with pytest.raises(InvalidParentError):
            _folder(conn, "f", parent="does-not-exist")

    def test_parent_must_be_folder(self, conn) -> None:
        config = _config(conn, "c", [])
        with pytest.raises(InvalidParentError):
            _folder(conn, "f", parent=config.id)

    def test_empty_name_rejected(self, conn) -> None:
        with pytest.raises(InvalidArgumentError):
            _folder(conn, "  ")

    def test_snapshot_type_rejected(self, conn) -> None:
        with pytest.raises(InvalidArgumentError):
            create_node(conn, ROOT_NODE_ID, "s", NodeType.SNAPSHOT, username="alice")

    def test_parent_touched(self, conn) -> None:
        _folder(conn, "f1", user="carol")
        assert get_node(conn, ROOT_NODE_ID).username == "carol"


# ---------------------------------------------------------------------------
# lookups
# ---------------------------------------------------------------------------

class TestLookups:
    def test_get_missing_node(self, conn) -> None:
        assert get_node(conn, "nope") is None

    def test_folder_inflated_with_children(self, conn) -> None:
        f1 = _folder(conn, "f1")
        _folder(conn, "b", parent=f1.id)
        _config(conn, "a", [], parent=f1.id)
        node = get_node(conn, f1.id)
        assert {c.name for c in node.children} == {"a", "b"}
        assert all(c.parent_id == f1.id for c in node.children)

    def test_get_child_nodes_missing(self, conn) -> None:
        with pytest.raises(NodeNotFoundError):
            get_child_nodes(conn, "nope")

    def test_get_parent_id(self, conn) -> None:
        f1 = _folder(conn, "f1")
        f2 = _folder(conn, "f2", parent=f1.id)
        assert get_parent_id(conn, f2.id) == f1.id

    def test_does_name_clash(self, conn) -> None:
        f1 = _folder(conn, "f1")
        assert does_name_clash(conn, ROOT_NODE_ID, "f1", NodeType.FOLDER)
        assert not does_name_clash(conn, ROOT_NODE_ID, "f1", NodeType.CONFIGURATION)
        assert not does_name_clash(conn, ROOT_NODE_ID, "f1", NodeType.FOLDER, exclude_id=f1.id)

    def test_lookups_wait_for_connection_lock(self, conn) -> None:
        f1 = _folder(conn, "f1")
        lookups = [
            lambda: get_parent_id(conn, f1.id),
            lambda: get_ancestors(conn, f1.id),
            lambda: get_descendants(conn, f1.id),
            lambda: does_name_clash(conn, ROOT_NODE_ID, "f1", NodeType.FOLDER),
        ]
        results: list = []
        threads = [threading.Thread(target=lambda f=f: results.append(f())) for f in lookups]
        with conn.lock:
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=0.2)
            assert results == []
        for t in threads:
            t.join()
        assert len(results) == 4


# ---------------------------------------------------------------------------
# rename
# ---------------------------------------------------------------------------

class TestRenameNode:
    def test_rename(self, conn) -> None:
        f1 = _folder(conn, "f1")
        renamed = rename_node(conn, f1.id, "renamed", "bob")
        assert renamed.name == "renamed"
        assert renamed.username == "bob"
        assert renamed.updated_at >= f1.updated_at

    def test_rename_root_rejected(self, conn) -> None:
        with pytest.raises(InvalidArgumentError):
            rename_node(conn, ROOT_NODE_ID, "x", "bob")

    def test_rename_missing(self, conn) -> None:
        with pytest.raises(NodeNotFoundError):
            rename_node(conn, "nope", "x", "bob")

    def test_rename_clash(self, conn) -> None:
        _folder(conn, "a")
        b = _folder(conn, "b")
        with pytest.raises(NameClashError):
            rename_node(conn, b.id, "a", "bob")
        assert get_node(conn, b.id).name == "b"

    def test_rename_to_own_name(self, conn) -> None:
        a = _folder(conn, "a")
        assert rename_node(conn, a.id, "a", "bob").name == "a"

    def test_rename_to_name_of_other_type(self, conn) -> None:
        _config(conn, "a", [])
        b = _folder(conn, "b")
        assert rename_node(conn, b.id, "a", "bob").name == "a"


# ---------------------------------------------------------------------------
# move
# ---------------------------------------------------------------------------

class TestMoveNode:
    def test_move_subtree(self, conn) -> None:
        f1 = _folder(conn, "f1")
        f2 = _folder(conn, "f2", parent=f1.id)
        config = _config(conn, "c", ["a"], parent=f2.id)
        f3 = _folder(conn, "f3")

        target = move_node(conn, f2.id, f3.id, "bob")

        assert target.id == f3.id
        assert [c.id for c in target.children] == [f2.id]
        assert get_parent_id(conn, f2.id) == f3.id
        assert get_ancestors(conn, config.id) == [
            (config.id, 0),
            (f2.id, 1),
            (f3.id, 2),
            (ROOT_NODE_ID, 3),
        ]
        assert get_child_nodes(conn, f1.id) == []
        _assert_closure_consistent(conn)

    def test_move_touches_parents(self, conn) -> None:
        f1 = _folder(conn, "f1")
        f2 = _folder(conn, "f2", parent=f1.id)
        f3 = _folder(conn, "f3")
        move_node(conn, f2.id, f3.id, "bob")
        assert get_node(conn, f1.id).username == "bob"
        assert get_node(conn, f3.id).username == "bob"
        assert get_node(conn, f2.id).username == "bob"

    def test_move_to_current_parent(self, conn) -> None:
        f1 = _folder(conn, "f1")
        f2 = _folder(conn, "f2", parent=f1.id)
        move_node(conn, f2.id, f1.id, "bob")
        assert get_parent_id(conn, f2.id) == f1.id
        _assert_closure_consistent(conn)

    def test_move_into_own_subtree_rejected(self, conn) -> None:
        f1 = _folder(conn, "f1")
        f2 = _folder(conn, "f2", parent=f1.id)
        with pytest.raises(InvalidArgumentError):
            move_node(conn, f1.id, f2.id, "bob")
        with pytest.raises(InvalidArgumentError):
            move_node(conn, f1.id, f1.id, "bob")
        assert get_parent_id(conn, f2.id) == f1.id

    def test_move_root_rejected(self, conn) -> None:
        f1 = _folder(conn, "f1")
        with pytest.raises(InvalidArgumentError):
            move_node(conn, ROOT_NODE_ID, f1.id, "bob")

    def test_target_must_be_folder(self, conn) -> None:
        f1 = _folder(conn, "f1")
        config = _config(conn, "c", [])
        with pytest.raises(InvalidArgumentError):
            move_node(conn, f1.id, config.id, "bob")

    def test_missing_nodes(self, conn) -> None:
        f1 = _folder(conn, "f1")
        with pytest.raises(NodeNotFoundError):
            move_node(conn, "nope", f1.id, "bob")
        with pytest.raises(NodeNotFoundError):
            move_node(conn, f1.id, "nope", "bob")

    def test_name_clash_at_target(self, conn) -> None:
        f1 = _folder(conn, "f1")
        dup = _folder(conn, "dup", parent=f1.id)
        _folder(conn, "dup")
        with pytest.raises(NameClashError):
            move_node(conn, dup.id, ROOT_NODE_ID, "bob")
        assert get_parent_id(conn, dup.id) == f1.id
        _assert_closure_consistent(conn)


class TestConcurrentMutations:
    def test_threads_share_one_connection(self, conn) -> None:
        left = _folder(conn, "left")
        right = _folder(conn, "right")
        nodes = [_folder(conn, f"n{i}", parent=left.id) for i in range(8)]
        _folder(conn, "inner", parent=nodes[0].id)
        errors: list[BaseException] = []

        def shuttle(node: Node) -> None:
            try:
                for i in range(10):
                    target = right if i % 2 == 0 else left
                    move_node(conn, node.id, target.id, "bob")
            except BaseException as exc:
                errors.append(exc)

        def churn(prefix: str) -> None:
            try:
                for i in range(10):
                    tmp = _folder(conn, f"{prefix}{i}", parent=right.id)
                    delete_node(conn, tmp.id)
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=shuttle, args=(n,)) for n in nodes]
        threads += [threading.Thread(target=churn, args=(p,)) for p in ("x", "y")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert {n.id for n in get_child_nodes(conn, left.id)} == {n.id for n in nodes}
        assert get_child_nodes(conn, right.id) == []
        orphans = conn.execute(
            """
            SELECT n.id FROM node AS n
            WHERE n.id != ?
              AND (SELECT COUNT(*) FROM node_closure AS c
                   WHERE c.descendant = n.id AND c.depth = 1) != 1
            """,
            (ROOT_NODE_ID,),
        ).fetchall()
        assert orphans == []
        _assert_closure_consistent(conn)


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------

class TestDeleteNode:
    def test_delete_subtree(self, conn) -> None:
        f1 = _folder(conn, "f1")
        f2 = _folder(conn, "f2", parent=f1.id)
        config = _config(conn, "c", ["a", "b"], parent=f2.id)

        delete_node(conn, f1.id)

        for node_id in (f1.id, f2.id, config.id):
            assert get_node(conn, node_id) is None
        count = conn.execute("SELECT COUNT(*) FROM node_closure").fetchone()[0]
        assert count == 1  # root self row
        assert _pv_names(conn) == set()

    def test_delete_keeps_shared_pvs(self, conn) -> None:
        c1 = _config(conn, "c1", ["a", "shared"])
        _config(conn, "c2", ["shared"])
        delete_node(conn, c1.id)
        assert _pv_names(conn) == {"shared"}

    def test_delete_root_rejected(self, conn) -> None:
        with pytest.raises(InvalidArgumentError):
            delete_node(conn, ROOT_NODE_ID)

    def test_delete_missing(self, conn) -> None:
        with pytest.raises(NodeNotFoundError):
            delete_node(conn, "nope")


# ---------------------------------------------------------------------------
# update configuration
# ---------------------------------------------------------------------------

class TestUpdateConfiguration:
    def test_symmetric_difference(self, conn) -> None:
        config = _config(conn, "c", ["a", "b", "c"])
        updated = update_configuration(
            conn, config.id, pvs=[ConfigPv("b"), ConfigPv("c"), ConfigPv("d")], username="bob"
        )
        assert [pv.pv_name for pv in updated.pvs] == ["b", "c", "d"]
        assert _pv_names(conn) == {"b", "c", "d"}
        assert updated.username == "bob"

    def test_reorder(self, conn) -> None:
        config = _config(conn, "c", ["a", "b"])
        updated = update_configuration(conn, config.id, pvs=[ConfigPv("b"), ConfigPv("a")])
        assert [pv.pv_name for pv in updated.pvs] == ["b", "a"]

    def test_removed_pv_kept_when_shared(self, conn) -> None:
        config = _config(conn, "c", ["a", "b"])
        _config(conn, "other", ["a"])
        update_configuration(conn, config.id, pvs=[ConfigPv("b")])
        assert _pv_names(conn) == {"a", "b"}

    def test_description_only(self, conn) -> None:
        config = _config(conn, "c", ["a"])
        updated = update_configuration(conn, config.id, description="new")
        assert updated.configuration.description == "new"
        assert [pv.pv_name for pv in updated.pvs] == ["a"]

    def test_rename_clash(self, conn) -> None:
        _config(conn, "taken", [])
        config = _config(conn, "c", [])
        with pytest.raises(NameClashError):
            update_configuration(conn, config.id, name="taken")
        assert update_configuration(conn, config.id, name="c").name == "c"

    def test_not_a_configuration(self, conn) -> None:
        f1 = _folder(conn, "f1")
        with pytest.raises(InvalidArgumentError):
            update_configuration(conn, f1.id, description="x")

    def test_missing(self, conn) -> None:
        with pytest.raises(NodeNotFoundError):
            update_configuration(conn, "nope", description="x")
