"""Snapshot endpoints.

Routes
------
GET    /snapshots/{snapshot_id}          Fetch a committed snapshot with its items
GET    /snapshots/{snapshot_id}/items    Items of a snapshot (committed or not)
POST   /snapshots/{snapshot_id}/commit   Name and commit a snapshot
POST   /snapshots/{snapshot_id}/golden   Tag as the configuration's golden snapshot
DELETE /snapshots/{snapshot_id}          Delete a snapshot
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from saverestore import services
from saverestore.api.routers.nodes import (
    NodeResponse,
    SnapshotItemModel,
    item_response,
    node_response,
)

router = APIRouter()


class SnapshotCommit(BaseModel):
    name: str
    username: str
    comment: Optional[str] = None


@router.get("/{snapshot_id}", response_model=NodeResponse)
def get_one(snapshot_id: str, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    return node_response(services.get_snapshot(conn, snapshot_id))


@router.get("/{snapshot_id}/items", response_model=list[SnapshotItemModel])
def items(snapshot_id: str, request: Request) -> list[dict[str, Any]]:
    conn = request.app.state.db
    return [item_response(i) for i in services.get_snapshot_items(conn, snapshot_id)]


@router.post("/{snapshot_id}/commit", response_model=NodeResponse)
def commit(snapshot_id: str, body: SnapshotCommit, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    snapshot = services.commit_snapshot(
        conn, snapshot_id, body.name, body.username, body.comment
    )
    return node_response(snapshot)


@router.post("/{snapshot_id}/golden", response_model=NodeResponse)
def golden(snapshot_id: str, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    return node_response(services.tag_snapshot_as_golden(conn, snapshot_id))


@router.delete("/{snapshot_id}")
def remove(snapshot_id: str, request: Request) -> Response:
    conn = request.app.state.db
    services.delete_snapshot(conn, snapshot_id)
    return Response(status_code=204)
