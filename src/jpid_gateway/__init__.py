"""
jpid-gateway
============

Multi-tenant dashboard gateway for jpid job servers.

The gateway sits between dashboard clients and a registry of backend job
servers. Ordinary commands (list, register, stop, update, delete) are
proxied request/response. Starting a process is answered with an event
stream that is relayed frame by frame from the job server to the client,
and torn down as soon as the client goes away.

Components:
    - registry: Server registry and resolver
    - upstream: Shared httpx client for job-server calls
    - stream: Frame codec, buffer, relay sessions, client consumer
    - api: FastAPI routers (/api commands, /api/servers)

Example:
    uvicorn jpid_gateway.main:app --port 3000
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
