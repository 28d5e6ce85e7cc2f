"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection (shared across all
requests via ``request.app.state.db``), initialises the schema and resolves
the PV source (``request.app.state.pv_source``).  On shutdown it stops the
PV read pool and closes the connection cleanly.

Routers
-------
All endpoint groups are mounted under their respective path prefix:

    /folders    Folder create / fetch / delete
    /configs    Configuration CRUD and snapshot taking
    /nodes      Generic node lookup, move and rename
    /snapshots  Snapshot lookup, commit, golden tagging and delete

Errors
------
Domain errors become JSON ``{"detail": ...}`` responses: missing nodes 404,
name clashes 409, any other invalid argument 400.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from saverestore.capture import load_pv_source, shutdown_executor
from saverestore.config import settings
from saverestore.db import get_connection, init_db
from saverestore.exceptions import InvalidArgumentError, NameClashError, NodeNotFoundError
from saverestore.logging_config import configure_logging

from saverestore.api.routers import configs as configs_router
from saverestore.api.routers import folders as folders_router
from saverestore.api.routers import nodes as nodes_router
from saverestore.api.routers import snapshots as snapshots_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the DB and PV source on startup, release them on shutdown."""
    configure_logging()
    conn = get_connection()
    init_db(conn)
    app.state.db = conn
    app.state.pv_source = load_pv_source(settings.pv_source)
    try:
        yield
    finally:
        shutdown_executor()
        conn.close()


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app() -> FastAPI:
    """Return a fully-configured FastAPI application instance."""
    app = FastAPI(
        title="Save & Restore API",
        description=(
            "REST interface for the save & restore service. "
            "Manages a tree of folders and PV configurations and takes, "
            "commits and tags snapshots of their values."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Handlers are looked up along the exception's MRO, most specific first.
    app.add_exception_handler(NodeNotFoundError, _error_handler(404))
    app.add_exception_handler(NameClashError, _error_handler(409))
    app.add_exception_handler(InvalidArgumentError, _error_handler(400))

    app.include_router(folders_router.router, prefix="/folders", tags=["folders"])
    app.include_router(configs_router.router, prefix="/configs", tags=["configs"])
    app.include_router(nodes_router.router, prefix="/nodes", tags=["nodes"])
    app.include_router(snapshots_router.router, prefix="/snapshots", tags=["snapshots"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn saverestore.api.app:app --reload
app = create_app()
