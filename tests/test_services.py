"""Service layer tests: use-case validation and the full snapshot workflow."""

from __future__ import annotations

import sqlite3
import time
from typing import Generator

import pytest

from saverestore import services
from saverestore.capture import InMemoryPvSource
from saverestore.db.connection import get_connection
from saverestore.db.migrations import init_db
from saverestore.db.models import ROOT_NODE_ID, ConfigPv, NodeType, PvValue
from saverestore.exceptions import (
    InvalidArgumentError,
    NodeNotFoundError,
    SnapshotNotFoundError,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def source() -> InMemoryPvSource:
    def never_answers():
        time.sleep(0.5)
        return 0.0

    return InMemoryPvSource(
        {
            "ca://p1": PvValue(7.7, alarm_severity="NONE", alarm_status="NONE"),
            "ca://p2": never_answers,
        }
    )


# ---------------------------------------------------------------------------
# nodes
# ---------------------------------------------------------------------------

class TestNodeUseCases:
    def test_parent_defaults_to_root(self, conn) -> None:
        folder = services.create_folder(conn, "f", "alice")
        config = services.create_configuration(conn, "c", "alice", pvs=[ConfigPv("a")])
        assert folder.parent_id == ROOT_NODE_ID
        assert config.parent_id == ROOT_NODE_ID

    def test_user_required(self, conn) -> None:
        with pytest.raises(InvalidArgumentError):
            services.create_folder(conn, "f", "")
        with pytest.raises(InvalidArgumentError):
            services.create_configuration(conn, "c", "  ")
        with pytest.raises(InvalidArgumentError):
            services.rename_node(conn, ROOT_NODE_ID, "x", "")

    def test_typed_getters(self, conn) -> None:
        folder = services.create_folder(conn, "f", "alice")
        config = services.create_configuration(conn, "c", "alice")
        assert services.get_folder(conn, folder.id).id == folder.id
        assert services.get_configuration(conn, config.id).id == config.id
        with pytest.raises(NodeNotFoundError):
            services.get_folder(conn, config.id)
        with pytest.raises(NodeNotFoundError):
            services.get_configuration(conn, folder.id)
        with pytest.raises(NodeNotFoundError):
            services.get_node(conn, "nope")

    def test_update_move_rename_delete(self, conn) -> None:
        folder = services.create_folder(conn, "f", "alice")
        config = services.create_configuration(conn, "c", "alice", pvs=[ConfigPv("a")])

        updated = services.update_configuration(
            conn, config.id, "bob", description="d", pvs=[ConfigPv("b")]
        )
        assert [pv.pv_name for pv in updated.pvs] == ["b"]
        assert updated.username == "bob"

        target = services.move_node(conn, config.id, folder.id, "bob")
        assert [c.id for c in target.children] == [config.id]

        assert services.rename_node(conn, config.id, "c2", "bob").name == "c2"

        services.delete_node(conn, folder.id)
        with pytest.raises(NodeNotFoundError):
            services.get_node(conn, config.id)

    def test_child_nodes(self, conn) -> None:
        services.create_folder(conn, "f", "alice")
        assert [n.name for n in services.get_child_nodes(conn, ROOT_NODE_ID)] == ["f"]


# ---------------------------------------------------------------------------
# snapshots
# ---------------------------------------------------------------------------

class TestSnapshotUseCases:
    def test_end_to_end(self, conn, source) -> None:
        folder = services.create_folder(conn, "F", "alice")
        config = services.create_configuration(
            conn, "C", "alice", pvs=[ConfigPv("p1"), ConfigPv("p2")], parent_id=folder.id
        )

        snapshot = services.take_snapshot(conn, config.id, source, "alice", timeout=0.1)
        assert snapshot.node_type is NodeType.SNAPSHOT
        assert not snapshot.snapshot.committed
        assert services.get_snapshots(conn, config.id) == []

        services.commit_snapshot(conn, snapshot.id, "S", "alice", "first")
        listed = services.get_snapshots(conn, config.id)
        assert [s.id for s in listed] == [snapshot.id]

        p1, p2 = listed[0].items
        assert p1.config_pv.pv_name == "p1"
        assert p1.fetch_status
        assert p1.value.value == 7.7
        assert p2.config_pv.pv_name == "p2"
        assert not p2.fetch_status

    def test_binary_and_unstorable_values_do_not_sink_snapshot(self, conn) -> None:
        source = InMemoryPvSource(
            {"ca://ok": 1.0, "ca://wave": b"\x01\x02", "ca://odd": {"x": object()}}
        )
        config = services.create_configuration(
            conn, "C", "alice", pvs=[ConfigPv("ok"), ConfigPv("wave"), ConfigPv("odd")]
        )
        snapshot = services.take_snapshot(conn, config.id, source, timeout=1.0)

        items = services.get_snapshot_items(conn, snapshot.id)
        assert [i.fetch_status for i in items] == [True, True, False]
        assert items[1].value.value == [1, 2]

    def test_take_snapshot_of_missing_configuration(self, conn, source) -> None:
        with pytest.raises(NodeNotFoundError):
            services.take_snapshot(conn, "nope", source)

    def test_take_snapshot_of_folder(self, conn, source) -> None:
        with pytest.raises(InvalidArgumentError):
            services.take_snapshot(conn, ROOT_NODE_ID, source)

    def test_take_snapshot_of_empty_configuration(self, conn, source) -> None:
        config = services.create_configuration(conn, "empty", "alice")
        snapshot = services.take_snapshot(conn, config.id, source)
        assert services.get_snapshot_items(conn, snapshot.id) == []

    def test_commit_requires_name_and_user(self, conn, source) -> None:
        config = services.create_configuration(conn, "C", "alice", pvs=[ConfigPv("p1")])
        snapshot = services.take_snapshot(conn, config.id, source)
        with pytest.raises(InvalidArgumentError):
            services.commit_snapshot(conn, snapshot.id, "", "alice")
        with pytest.raises(InvalidArgumentError):
            services.commit_snapshot(conn, snapshot.id, "S", "")

    def test_get_snapshot_hides_preliminary(self, conn, source) -> None:
        config = services.create_configuration(conn, "C", "alice", pvs=[ConfigPv("p1")])
        snapshot = services.take_snapshot(conn, config.id, source)
        with pytest.raises(SnapshotNotFoundError):
            services.get_snapshot(conn, snapshot.id)
        services.commit_snapshot(conn, snapshot.id, "S", "alice")
        assert services.get_snapshot(conn, snapshot.id).name == "S"

    def test_golden_and_delete(self, conn, source) -> None:
        config = services.create_configuration(conn, "C", "alice", pvs=[ConfigPv("p1")])
        first = services.take_snapshot(conn, config.id, source)
        second = services.take_snapshot(conn, config.id, source)
        services.commit_snapshot(conn, first.id, "first", "alice")
        services.commit_snapshot(conn, second.id, "second", "alice")

        services.tag_snapshot_as_golden(conn, first.id)
        services.tag_snapshot_as_golden(conn, second.id)
        golden = [s.name for s in services.get_snapshots(conn, config.id) if s.snapshot.golden]
        assert golden == ["second"]

        services.delete_snapshot(conn, second.id)
        with pytest.raises(SnapshotNotFoundError):
            services.delete_snapshot(conn, second.id)
        with pytest.raises(SnapshotNotFoundError):
            services.tag_snapshot_as_golden(conn, "nope")
