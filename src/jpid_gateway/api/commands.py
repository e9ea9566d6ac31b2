"""
Command Router
==============

Per-server command routes under /api.

Every route resolves the server id first; an unknown id is answered with
404 before any upstream contact. Direct commands forward the upstream
status and body unchanged. The start route hands off to the StreamRelay
and answers with an event stream.

Endpoints:
    GET    /api/projects/{server_id}                      - list processes
    GET    /api/register/{server_id}                      - auto-register
    POST   /api/stop/{server_id}/{process_id}             - stop a process
    POST   /api/update/{server_id}/{process_id}           - update a record
    DELETE /api/delete/{server_id}/{record_id}            - delete a record
    GET    /api/start/{server_id}/{start_type}/{process_id} - start (stream)
    GET    /api/sessions                                  - live relay sessions
"""

import logging
from typing import Any

import httpx
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, Response

from jpid_gateway.api.dependencies import get_registry, get_relay, get_upstream
from jpid_gateway.models.process import StartType, path_segment
from jpid_gateway.registry import ServerRegistry
from jpid_gateway.stream.relay import StreamRelay
from jpid_gateway.upstream import UpstreamClient


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["commands"])


def _forward(response: httpx.Response) -> Response:
    """Relay an upstream answer as-is."""
    return Response(
        content=response.content,
        status_code=response.status_code,
        media_type=response.headers.get("content-type"),
    )


# =============================================================================
# Direct Commands
# =============================================================================

@router.get("/projects/{server_id}")
async def list_projects(
    server_id: str,
    registry: ServerRegistry = Depends(get_registry),
    upstream: UpstreamClient = Depends(get_upstream),
) -> Response:
    record = registry.resolve(server_id)
    return _forward(await upstream.call(record, "GET", ""))


@router.get("/register/{server_id}")
async def auto_register(
    server_id: str,
    registry: ServerRegistry = Depends(get_registry),
    upstream: UpstreamClient = Depends(get_upstream),
) -> Response:
    record = registry.resolve(server_id)
    return _forward(await upstream.call(record, "GET", "/auto/register"))


@router.post("/stop/{server_id}/{process_id}")
async def stop_process(
    server_id: str,
    process_id: str,
    registry: ServerRegistry = Depends(get_registry),
    upstream: UpstreamClient = Depends(get_upstream),
) -> Response:
    """
    Stop a running process.

    Independent of any open stream for the same process; the stream ends
    on its own when the upstream closes it.
    """
    record = registry.resolve(server_id)
    logger.info(f"Stop requested for {server_id}/{process_id}")
    path = f"/stop/{path_segment(process_id)}"
    return _forward(await upstream.call(record, "POST", path))


@router.post("/update/{server_id}/{process_id}")
async def update_process(
    server_id: str,
    process_id: str,
    payload: Any = Body(default=None),
    registry: ServerRegistry = Depends(get_registry),
    upstream: UpstreamClient = Depends(get_upstream),
) -> Response:
    record = registry.resolve(server_id)
    path = f"/update/{path_segment(process_id)}"
    return _forward(await upstream.call(record, "POST", path, json=payload))


@router.delete("/delete/{server_id}/{record_id}")
async def delete_process(
    server_id: str,
    record_id: str,
    registry: ServerRegistry = Depends(get_registry),
    upstream: UpstreamClient = Depends(get_upstream),
) -> Response:
    record = registry.resolve(server_id)
    path = f"/delete/{path_segment(record_id)}"
    return _forward(await upstream.call(record, "DELETE", path))


# =============================================================================
# Streaming Start
# =============================================================================

@router.get("/start/{server_id}/{start_type}/{process_id}")
async def start_process(
    server_id: str,
    start_type: str,
    process_id: str,
    background: str = "false",
    registry: ServerRegistry = Depends(get_registry),
    upstream: UpstreamClient = Depends(get_upstream),
    relay: StreamRelay = Depends(get_relay),
) -> Response:
    """
    Start a process and relay its output stream.

    Order of checks: server id (404), start type (400), upstream connect
    (502 or the upstream's status). Once the upstream answered 2xx the
    response is 200 text/event-stream and later failures arrive in-band.

    Only background=true enables background mode; any other value is
    treated as false.
    """
    record = registry.resolve(server_id)
    kind = StartType.parse(start_type)
    target = upstream.start_target(record, process_id, kind, background == "true")
    return await relay.start(record.id, target)


@router.get("/sessions")
async def list_sessions(relay: StreamRelay = Depends(get_relay)) -> JSONResponse:
    """Live relay sessions."""
    return JSONResponse({
        "active": relay.active_count,
        "sessions": [session.to_dict() for session in relay.sessions()],
    })
