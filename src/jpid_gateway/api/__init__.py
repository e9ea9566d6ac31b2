"""
API Module
==========

FastAPI routers mounted by main.py.

Components:
    - commands: Per-server command proxy and the streaming start route
    - servers: Server registry CRUD
"""

from jpid_gateway.api.commands import router as commands_router
from jpid_gateway.api.servers import router as servers_router


__all__ = [
    "commands_router",
    "servers_router",
]
