"""
Gateway Errors
==============

Exception taxonomy for the jpid gateway.

Every error that can be turned into an HTTP response derives from
GatewayError and carries the status code it maps to. The FastAPI app
registers a single handler for GatewayError (see main.py), so routes
simply raise.

Hierarchy:
    GatewayError
        ConfigurationError       - rejected before any upstream contact
            UnknownServerError   - 404, server id not in the registry
            InvalidStartTypeError - 400, start type not run/script
        RegistryError
            InvalidServerError   - 400, malformed registry record
            DuplicateServerError - 409, URL already registered
        UpstreamError            - 502, upstream unreachable or failing
            UpstreamConnectError - before streaming; upstream status if known
            UpstreamStreamError  - after streaming began (in-band only)
        StreamSubscribeError     - client consumer could not subscribe

FrameParseError is internal to the frame codec. It never reaches an HTTP
response; the codec turns it into an `error` frame.

Downstream disconnects are NOT errors and have no class here.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Base class for errors rendered as JSON responses.

    Attributes:
        message: Human readable summary
        details: Optional low-level detail (upstream message, exception text)
        status_code: HTTP status used when rendered
        upstream_status: Status returned by the upstream, if any
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
        upstream_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.upstream_status = upstream_status
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Render as the structured JSON error body."""
        return {
            "error": self.message,
            "details": self.details,
            "status": self.upstream_status,
        }


class ConfigurationError(GatewayError):
    """Request refers to something the gateway cannot route."""

    status_code = 400


class UnknownServerError(ConfigurationError):
    """Server id is not present in the registry."""

    status_code = 404

    def __init__(self, server_id: str) -> None:
        super().__init__(f'Server "{server_id}" not found.')
        self.server_id = server_id


class InvalidStartTypeError(ConfigurationError):
    """Start type outside the enumerated set."""

    def __init__(self, start_type: str) -> None:
        super().__init__(
            'Invalid start type. Must be "run" or "script".',
            details=f"got {start_type!r}",
        )
        self.start_type = start_type


class RegistryError(GatewayError):
    """Registry mutation rejected."""

    status_code = 400


class InvalidServerError(RegistryError):
    pass


class DuplicateServerError(RegistryError):
    status_code = 409


class UpstreamError(GatewayError):
    """Upstream server could not be reached or answered with a failure."""

    status_code = 502


class UpstreamConnectError(UpstreamError):
    """
    Upstream request could not be established.

    When the upstream answered with a status, that status is reused for
    the downstream response; otherwise the generic 502 applies.
    """

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            details=details,
            status_code=upstream_status or UpstreamError.status_code,
            upstream_status=upstream_status,
        )


class UpstreamStreamError(UpstreamError):
    """Upstream failed after streaming began."""


class StreamSubscribeError(GatewayError):
    """Client consumer got a non-success answer when subscribing."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(
            f"Subscription rejected with HTTP {status_code}",
            details=body,
            status_code=status_code,
            upstream_status=status_code,
        )


class FrameParseError(Exception):
    """Raised by the codec when one segment cannot be parsed."""

    def __init__(self, message: str, segment: str) -> None:
        super().__init__(message)
        self.segment = segment


__all__ = [
    "GatewayError",
    "ConfigurationError",
    "UnknownServerError",
    "InvalidStartTypeError",
    "RegistryError",
    "InvalidServerError",
    "DuplicateServerError",
    "UpstreamError",
    "UpstreamConnectError",
    "UpstreamStreamError",
    "StreamSubscribeError",
    "FrameParseError",
]
