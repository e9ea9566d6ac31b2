"""
Process Models
==============

Types describing a start request routed to an upstream job server.

The upstream exposes two streaming start operations:

    GET {base}{prefix}/start/run/{pid}?background=<bool>
    GET {base}{prefix}/start/script/{pid}

UpstreamTarget resolves these from a registry record and the request
parameters. It is derived per request and never stored.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict
from urllib.parse import quote

from jpid_gateway.errors import InvalidStartTypeError


class StartType(str, Enum):
    """
    Start operations supported by the upstream.

    Attributes:
        RUN: Run the configured command (optionally in background)
        SCRIPT: Run the project's start script
    """

    RUN = "run"
    SCRIPT = "script"

    @classmethod
    def parse(cls, value: str) -> "StartType":
        """
        Parse a route parameter.

        Raises:
            InvalidStartTypeError: For anything but "run" or "script".
        """
        try:
            return cls(value)
        except ValueError:
            raise InvalidStartTypeError(value) from None


def path_segment(value: str) -> str:
    """
    Escape a route parameter for use as one upstream path segment.

    Route parameters arrive decoded, so "?", "#" and "/" are escaped and a
    bare "." or ".." is percent-encoded to keep it from being resolved
    as a relative path.
    """
    quoted = quote(value, safe="")
    if quoted in (".", ".."):
        return quoted.replace(".", "%2E")
    return quoted


@dataclass(frozen=True)
class UpstreamTarget:
    """
    Concrete upstream start request.

    Attributes:
        base_url: Registry base URL (no trailing slash)
        process_id: Upstream process identifier
        start_type: run or script
        background: Background flag, only sent for run
        api_prefix: Path prefix of the upstream API (e.g. "/jpid")
    """

    base_url: str
    process_id: str
    start_type: StartType = StartType.RUN
    background: bool = False
    api_prefix: str = ""

    @property
    def url(self) -> str:
        segment = path_segment(self.process_id)
        return f"{self.base_url}{self.api_prefix}/start/{self.start_type.value}/{segment}"

    @property
    def params(self) -> Dict[str, str]:
        if self.start_type is StartType.RUN:
            return {"background": "true" if self.background else "false"}
        return {}
