"""
Server Registry Routes
======================

CRUD surface over the ServerRegistry.

Endpoints:
    GET    /api/servers           - list servers (newest first)
    POST   /api/servers           - register a server (201)
    GET    /api/servers/export    - download the registry as JSON
    POST   /api/servers/import    - bulk import an exported list
    POST   /api/servers/reset     - remove every server
    GET    /api/servers/{id}      - one server
    DELETE /api/servers/{id}      - unregister a server

Handlers are plain functions and run in FastAPI's threadpool; registry
file writes stay off the event loop that carries the relay streams.
"""

import logging
from typing import Any, List

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from jpid_gateway.api.dependencies import get_registry
from jpid_gateway.errors import InvalidServerError
from jpid_gateway.models.registry import ImportSummary, ServerCreate, ServerRecord
from jpid_gateway.registry import ServerRegistry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/servers", tags=["servers"])

EXPORT_FILENAME = "servers_backup.json"


@router.get("")
def list_servers(registry: ServerRegistry = Depends(get_registry)) -> List[ServerRecord]:
    return registry.list()


@router.post("", status_code=201)
def add_server(
    payload: Any = Body(default=None),
    registry: ServerRegistry = Depends(get_registry),
) -> ServerRecord:
    """
    Register a server.

    Validation failures answer 400 (not FastAPI's default 422) so every
    registry rejection shares the gateway error body.
    """
    try:
        create = ServerCreate.model_validate(payload)
    except ValidationError as e:
        raise InvalidServerError(
            "Server URL and description are required.",
            details=str(e),
        )
    return registry.add(create)


@router.get("/export")
def export_servers(registry: ServerRegistry = Depends(get_registry)) -> JSONResponse:
    return JSONResponse(
        registry.export(),
        headers={"Content-Disposition": f"attachment; filename={EXPORT_FILENAME}"},
    )


@router.post("/import")
def import_servers(
    payload: Any = Body(default=None),
    registry: ServerRegistry = Depends(get_registry),
) -> ImportSummary:
    if not isinstance(payload, list):
        raise InvalidServerError(
            "Invalid import format.",
            details="expected a JSON array of servers",
        )
    return registry.import_records(payload)


@router.post("/reset")
def reset_servers(registry: ServerRegistry = Depends(get_registry)) -> JSONResponse:
    removed = registry.reset()
    return JSONResponse({
        "success": True,
        "message": "Registry has been reset",
        "removed": removed,
    })


@router.get("/{server_id}")
def get_server(
    server_id: str,
    registry: ServerRegistry = Depends(get_registry),
) -> ServerRecord:
    return registry.resolve(server_id)


@router.delete("/{server_id}")
def delete_server(
    server_id: str,
    registry: ServerRegistry = Depends(get_registry),
) -> JSONResponse:
    registry.delete(server_id)
    return JSONResponse({"success": True})
