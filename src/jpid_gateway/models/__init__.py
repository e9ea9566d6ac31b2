"""
Data Models
===========

Models for the jpid gateway.

This module re-exports all data models for convenient access.

Models:
    Registry:
        - ServerCreate: Payload for registering a server
        - ServerRecord: A registered backend server
        - ImportResults, ImportSummary: Bulk import outcome

    Process:
        - StartType: Enum of upstream start operations (run, script)
        - UpstreamTarget: Resolved upstream start request
        - path_segment: Escape a route parameter for an upstream path
"""

from jpid_gateway.models.registry import (
    ImportResults,
    ImportSummary,
    ServerCreate,
    ServerRecord,
    normalize_base_url,
)
from jpid_gateway.models.process import StartType, UpstreamTarget, path_segment

__all__ = [
    # Registry
    "ServerCreate",
    "ServerRecord",
    "ImportResults",
    "ImportSummary",
    "normalize_base_url",
    # Process
    "StartType",
    "UpstreamTarget",
    "path_segment",
]
