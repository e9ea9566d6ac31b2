"""
jpid Gateway Main Application
=============================

FastAPI entry point for the jpid dashboard gateway.

Components (built in the lifespan, stored on app.state):
    - registry: ServerRegistry (loaded from disk, seeded from config)
    - upstream: UpstreamClient (one shared httpx connection pool)
    - relay: StreamRelay (live start streams)

Endpoints:
    GET  /          - Service information
    GET  /health    - Liveness probe (is process alive?)
    GET  /ready     - Readiness probe (components initialized?)
    GET  /metrics   - Relay and registry metrics
    *    /api/...   - Command proxy, streaming start, server registry
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from jpid_gateway.api import commands_router, servers_router
from jpid_gateway.config import Settings, settings as default_settings
from jpid_gateway.errors import GatewayError
from jpid_gateway.registry import ServerRegistry
from jpid_gateway.stream.relay import StreamRelay
from jpid_gateway.upstream import UpstreamClient


logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Management
# =============================================================================

def _build_lifespan(settings: Settings, transport: Optional[httpx.AsyncBaseTransport]):

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager with graceful shutdown."""
        app.state.startup_time = time.time()
        logger.info(f"Starting {settings.gateway.name} {settings.gateway.version}")

        # Registry
        registry = ServerRegistry(
            path=settings.registry.path,
            enforce_unique_urls=settings.registry.enforce_unique_urls,
        )
        registry.load()
        seeded = registry.seed(settings.registry.servers)
        logger.info(f"Registry ready: {len(registry)} servers ({seeded} seeded from config)")

        # Upstream + relay
        upstream = UpstreamClient.create(settings.upstream, transport=transport)
        relay = StreamRelay.from_settings(upstream, settings.relay)
        logger.info(
            f"Upstream prefix: {settings.upstream.api_prefix or '(none)'}, "
            f"relay queue size: {settings.relay.queue_size}"
        )

        app.state.registry = registry
        app.state.upstream = upstream
        app.state.relay = relay

        yield

        # Shutdown
        logger.info("Shutting down gracefully...")
        await relay.shutdown()
        await upstream.aclose()
        logger.info("Shutdown complete")

    return lifespan


# =============================================================================
# Error Handling
# =============================================================================

async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render any GatewayError as a JSON error body with its status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Settings to use (defaults to the loaded global settings)
        transport: httpx transport override for upstream calls

    Returns:
        FastAPI: Configured application
    """
    settings = settings or default_settings

    app = FastAPI(
        title="jpid-gateway",
        description="Multi-tenant dashboard gateway for jpid job servers",
        version=settings.gateway.version,
        lifespan=_build_lifespan(settings, transport),
    )
    app.state.settings = settings
    app.state.startup_time = time.time()

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.include_router(servers_router)
    app.include_router(commands_router)

    # -------------------------------------------------------------------------
    # Service Endpoints
    # -------------------------------------------------------------------------

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "jpid-gateway",
            "version": settings.gateway.version,
            "name": settings.gateway.name,
            "status": "running",
            "upstream_prefix": settings.upstream.api_prefix,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """
        Liveness probe - is the process alive?

        Always returns 200 if the service is running.
        """
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
        })

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        """
        Readiness probe - is the service ready to handle requests?

        Returns 200 once the lifespan has built the registry, upstream
        client and relay. Returns 503 otherwise.
        """
        state = request.app.state
        components = {
            "registry": getattr(state, "registry", None) is not None,
            "upstream": getattr(state, "upstream", None) is not None,
            "relay": getattr(state, "relay", None) is not None,
        }
        if all(components.values()):
            return JSONResponse({
                "status": "ready",
                "servers": len(state.registry),
                "active_streams": state.relay.active_count,
            })
        return JSONResponse(
            {"status": "not_ready", **components},
            status_code=503,
        )

    @app.get("/metrics")
    async def metrics(request: Request) -> JSONResponse:
        """Detailed metrics for observability."""
        relay: StreamRelay = request.app.state.relay
        registry: ServerRegistry = request.app.state.registry
        return JSONResponse({
            "uptime_seconds": round(time.time() - request.app.state.startup_time, 1),
            "servers": len(registry),
            "active_streams": relay.active_count,
            **relay.metrics.to_dict(),
        })

    return app


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jpid_gateway.main:app",
        host=default_settings.server.host,
        port=default_settings.server.port,
        reload=False,
    )
