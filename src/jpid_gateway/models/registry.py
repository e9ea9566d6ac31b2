"""
Registry Models
===============

Pydantic models for the server registry.

Record Contract:
    {
        "id": "3f0c9a2e5b7d4c1e8a6f0b2d4c6e8a0f",
        "url": "http://10.0.0.12:8000",
        "description": "build box",
        "created_at": 1707321234.567
    }

Design Rules:
    - id is generated by the registry, never supplied by clients on add
    - url is an absolute http(s) base URL stored without trailing slash
    - Records are immutable; change = delete + re-add
"""

import time
from typing import List
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def normalize_base_url(value: str) -> str:
    """Validate an absolute http(s) URL and strip trailing slashes."""
    value = (value or "").strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"not an absolute http(s) URL: {value!r}")
    return value.rstrip("/")


class ServerCreate(BaseModel):
    """
    Payload for registering a server.

    Attributes:
        url: Base URL of the job-management server
        description: Free text shown in the dashboard
    """

    url: str = Field(..., min_length=1, description="Absolute base URL")
    description: str = Field(..., min_length=1, description="Display description")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return normalize_base_url(value)


class ServerRecord(ServerCreate):
    """
    A registered backend server.

    Attributes:
        id: Opaque identifier, used in every gateway route
        url: Base URL (validated, no trailing slash)
        description: Display description
        created_at: UNIX timestamp of registration
    """

    id: str = Field(..., min_length=1, description="Opaque server identifier")
    created_at: float = Field(default_factory=time.time)

    model_config = {"frozen": True}


class ImportResults(BaseModel):
    total: int = 0
    imported: int = 0
    failed: int = 0


class ImportSummary(BaseModel):
    """Outcome of a bulk import."""

    message: str
    results: ImportResults
    servers: List[ServerRecord] = Field(default_factory=list)
