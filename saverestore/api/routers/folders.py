"""Folder endpoints.

Routes
------
POST   /folders              Create a folder (under the root unless parent_id is given)
GET    /folders/{folder_id}  Fetch a folder with its children
DELETE /folders/{folder_id}  Delete a folder and everything below it
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from saverestore import services
from saverestore.api.routers.nodes import NodeResponse, node_response

router = APIRouter()


class FolderCreate(BaseModel):
    name: str
    username: str
    parent_id: Optional[str] = None


@router.post("", response_model=NodeResponse, status_code=201)
def create(body: FolderCreate, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    folder = services.create_folder(
        conn, body.name, body.username, parent_id=body.parent_id
    )
    return node_response(folder)


@router.get("/{folder_id}", response_model=NodeResponse)
def get_one(folder_id: str, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    return node_response(services.get_folder(conn, folder_id))


@router.delete("/{folder_id}")
def remove(folder_id: str, request: Request) -> Response:
    """Delete a folder; configurations and snapshots below it go with it."""
    conn = request.app.state.db
    services.get_folder(conn, folder_id)
    services.delete_node(conn, folder_id)
    return Response(status_code=204)
