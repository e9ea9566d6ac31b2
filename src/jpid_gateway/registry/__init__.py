"""
Registry Module
===============

Server registry and the resolver interface consumed by the relay.

Components:
    - RegistryResolver: Read-only protocol (resolve by id)
    - ServerRegistry: In-memory store with optional JSON persistence
"""

from jpid_gateway.registry.store import RegistryResolver, ServerRegistry, generate_id


__all__ = [
    "RegistryResolver",
    "ServerRegistry",
    "generate_id",
]
