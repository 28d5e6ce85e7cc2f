"""Generic node endpoints plus the response schemas shared by every router.

Routes
------
GET    /nodes/{node_id}            Fetch any node (folder, configuration or snapshot)
GET    /nodes/{node_id}/children   Direct children of a node
POST   /nodes/{node_id}/move       Move a node under ?to=<folder id>
POST   /nodes/{node_id}/rename     Rename a node to ?name=<new name>
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from saverestore import services
from saverestore.config import settings
from saverestore.db.models import Node, SnapshotItem

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ConfigPvModel(BaseModel):
    pv_name: str
    provider: str = Field(default_factory=lambda: settings.default_provider)


class PvValueModel(BaseModel):
    value: Any
    data_type: Optional[str]
    alarm_severity: str
    alarm_status: str
    time: int
    timens: int
    sizes: list[int]


class SnapshotItemModel(BaseModel):
    pv_name: str
    provider: str
    fetch_status: bool
    value: Optional[PvValueModel] = None


class NodeSummary(BaseModel):
    id: str
    name: str
    node_type: str
    created_at: int
    updated_at: int
    username: Optional[str]
    parent_id: Optional[str]


class NodeResponse(NodeSummary):
    # Folder
    children: Optional[list[NodeSummary]] = None
    # Configuration
    description: Optional[str] = None
    pvs: Optional[list[ConfigPvModel]] = None
    # Snapshot
    config_id: Optional[str] = None
    committed: Optional[bool] = None
    golden: Optional[bool] = None
    comment: Optional[str] = None
    items: Optional[list[SnapshotItemModel]] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def node_summary(node: Node) -> dict[str, Any]:
    return {
        "id": node.id,
        "name": node.name,
        "node_type": node.node_type.value,
        "created_at": node.created_at,
        "updated_at": node.updated_at,
        "username": node.username,
        "parent_id": node.parent_id,
    }


def item_response(item: SnapshotItem) -> dict[str, Any]:
    value = item.value
    return {
        "pv_name": item.config_pv.pv_name,
        "provider": item.config_pv.provider,
        "fetch_status": item.fetch_status,
        "value": None
        if value is None
        else {
            "value": value.value,
            "data_type": value.data_type,
            "alarm_severity": value.alarm_severity,
            "alarm_status": value.alarm_status,
            "time": value.time,
            "timens": value.timens,
            "sizes": list(value.sizes),
        },
    }


def node_response(node: Node) -> dict[str, Any]:
    """Flatten a node and its type-specific payload into a response dict."""
    payload = node_summary(node)
    if node.configuration is not None:
        payload["description"] = node.configuration.description
        payload["pvs"] = [
            {"pv_name": pv.pv_name, "provider": pv.provider} for pv in node.configuration.pvs
        ]
    elif node.snapshot is not None:
        payload["config_id"] = node.snapshot.config_id
        payload["committed"] = node.snapshot.committed
        payload["golden"] = node.snapshot.golden
        payload["comment"] = node.snapshot.comment
        payload["items"] = [item_response(i) for i in node.snapshot.items]
    else:
        payload["children"] = [node_summary(c) for c in node.children]
    return payload


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/{node_id}", response_model=NodeResponse)
def get_one(node_id: str, request: Request) -> dict[str, Any]:
    """Fetch a single node by id."""
    conn = request.app.state.db
    return node_response(services.get_node(conn, node_id))


@router.get("/{node_id}/children", response_model=list[NodeSummary])
def children(node_id: str, request: Request) -> list[dict[str, Any]]:
    conn = request.app.state.db
    return [node_summary(n) for n in services.get_child_nodes(conn, node_id)]


@router.post("/{node_id}/move", response_model=NodeResponse)
def move(node_id: str, to: str, username: str, request: Request) -> dict[str, Any]:
    """Move a node (and its subtree) into folder ``to``; returns that folder."""
    conn = request.app.state.db
    return node_response(services.move_node(conn, node_id, to, username))


@router.post("/{node_id}/rename", response_model=NodeResponse)
def rename(node_id: str, name: str, username: str, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    return node_response(services.rename_node(conn, node_id, name, username))
