"""Configuration endpoints.

Routes
------
POST   /configs                        Create a configuration
GET    /configs/{config_id}            Fetch a configuration with its PV list
PUT    /configs/{config_id}            Update name, description and/or PVs
DELETE /configs/{config_id}            Delete a configuration and its snapshots
GET    /configs/{config_id}/snapshots  Committed snapshots, oldest first
POST   /configs/{config_id}/snapshots  Take a (preliminary) snapshot
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from saverestore import services
from saverestore.api.routers.nodes import ConfigPvModel, NodeResponse, node_response
from saverestore.db.models import ConfigPv

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ConfigCreate(BaseModel):
    name: str
    username: str
    description: str = ""
    pvs: list[ConfigPvModel] = []
    parent_id: Optional[str] = None


class ConfigUpdate(BaseModel):
    username: str
    name: Optional[str] = None
    description: Optional[str] = None
    pvs: Optional[list[ConfigPvModel]] = None


class SnapshotTake(BaseModel):
    username: Optional[str] = None


def _to_config_pvs(pvs: list[ConfigPvModel]) -> list[ConfigPv]:
    return [ConfigPv(pv_name=pv.pv_name, provider=pv.provider) for pv in pvs]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", response_model=NodeResponse, status_code=201)
def create(body: ConfigCreate, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    config = services.create_configuration(
        conn,
        body.name,
        body.username,
        pvs=_to_config_pvs(body.pvs),
        description=body.description,
        parent_id=body.parent_id,
    )
    return node_response(config)


@router.get("/{config_id}", response_model=NodeResponse)
def get_one(config_id: str, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    return node_response(services.get_configuration(conn, config_id))


@router.put("/{config_id}", response_model=NodeResponse)
def update(config_id: str, body: ConfigUpdate, request: Request) -> dict[str, Any]:
    """Update a configuration.  Omitted fields keep their stored value."""
    conn = request.app.state.db
    config = services.update_configuration(
        conn,
        config_id,
        body.username,
        name=body.name,
        description=body.description,
        pvs=_to_config_pvs(body.pvs) if body.pvs is not None else None,
    )
    return node_response(config)


@router.delete("/{config_id}")
def remove(config_id: str, request: Request) -> Response:
    conn = request.app.state.db
    services.get_configuration(conn, config_id)
    services.delete_node(conn, config_id)
    return Response(status_code=204)


@router.get("/{config_id}/snapshots", response_model=list[NodeResponse])
def list_snapshots(config_id: str, request: Request) -> list[dict[str, Any]]:
    conn = request.app.state.db
    return [node_response(s) for s in services.get_snapshots(conn, config_id)]


@router.post("/{config_id}/snapshots", response_model=NodeResponse, status_code=201)
def take_snapshot(
    config_id: str, request: Request, body: Optional[SnapshotTake] = None
) -> dict[str, Any]:
    """Read every PV of the configuration and store a preliminary snapshot.

    The snapshot stays hidden until it is committed via
    ``POST /snapshots/{id}/commit``.
    """
    conn = request.app.state.db
    snapshot = services.take_snapshot(
        conn,
        config_id,
        request.app.state.pv_source,
        username=body.username if body else None,
    )
    return node_response(snapshot)
