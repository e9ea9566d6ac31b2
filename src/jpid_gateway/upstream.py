"""
Upstream Client
===============

HTTP access to the backend job servers.

Two httpx.AsyncClients are shared by every request the gateway makes:
one pool for streams, one for direct calls. Long-lived streams can fill
their pool without starving a stop or list call. Streaming requests run
with no read timeout, since a started process may stay silent for
arbitrarily long; direct calls use the configured request timeout.

Upstream API (relative to a registry base URL and the api prefix):
    GET    {prefix}                      - list processes
    GET    {prefix}/auto/register        - auto-register running processes
    POST   {prefix}/stop/{pid}           - stop a process
    POST   {prefix}/update/{pid}         - update a process record
    DELETE {prefix}/delete/{id}          - delete a process record
    GET    {prefix}/start/{type}/{pid}   - start, answered with an event stream
"""

import logging
from typing import Any, Optional

import httpx

from jpid_gateway.config import UpstreamConfig
from jpid_gateway.errors import UpstreamConnectError, UpstreamError
from jpid_gateway.models.process import StartType, UpstreamTarget
from jpid_gateway.models.registry import ServerRecord


logger = logging.getLogger(__name__)

_STREAM_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}

# Cap on how much of an upstream error body is echoed back
_MAX_ERROR_BODY = 2048


def _limits(max_connections: int) -> httpx.Limits:
    return httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max(1, max_connections // 2),
    )


class UpstreamClient:
    """
    Thin wrapper over httpx for the job-server API.

    Attributes:
        api_prefix: Path prefix of the upstream API
        request_timeout: Read timeout for direct calls (seconds)

    Example:
        upstream = UpstreamClient.create(settings.upstream)
        response = await upstream.call(record, "GET", "")
        await upstream.aclose()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_prefix: str = "/jpid",
        request_timeout: float = 30.0,
        stream_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client
        self._stream_client = stream_client or client
        self.api_prefix = api_prefix.rstrip("/")
        self.request_timeout = request_timeout

    @classmethod
    def create(
        cls,
        config: UpstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "UpstreamClient":
        """
        Build the shared clients from configuration.

        Args:
            config: Upstream section of the settings
            transport: Optional transport override (tests use MockTransport)
        """
        timeout = httpx.Timeout(
            connect=config.connect_timeout_seconds,
            read=None,
            write=config.connect_timeout_seconds,
            pool=config.connect_timeout_seconds,
        )
        stream_client = httpx.AsyncClient(
            timeout=timeout,
            limits=_limits(config.max_connections),
            transport=transport,
            headers={"Connection": "keep-alive"},
        )
        client = httpx.AsyncClient(
            timeout=timeout,
            limits=_limits(config.max_direct_connections),
            transport=transport,
            headers={"Connection": "keep-alive"},
        )
        return cls(
            client,
            config.api_prefix,
            config.request_timeout_seconds,
            stream_client=stream_client,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
        if self._stream_client is not self._client:
            await self._stream_client.aclose()

    def endpoint(self, record: ServerRecord, path: str = "") -> str:
        """Absolute upstream URL for an API path (e.g. "/stop/42")."""
        return f"{record.url}{self.api_prefix}{path}"

    def start_target(
        self,
        record: ServerRecord,
        process_id: str,
        start_type: StartType,
        background: bool = False,
    ) -> UpstreamTarget:
        return UpstreamTarget(
            base_url=record.url,
            process_id=process_id,
            start_type=start_type,
            background=background,
            api_prefix=self.api_prefix,
        )

    async def call(
        self,
        record: ServerRecord,
        method: str,
        path: str,
        json: Any = None,
    ) -> httpx.Response:
        """
        Perform a direct (request/response) call.

        Any HTTP status is returned as-is; only transport failures raise.

        Raises:
            UpstreamError: If the upstream could not be reached.
        """
        url = self.endpoint(record, path)
        timeout = httpx.Timeout(self.request_timeout, connect=self._client.timeout.connect)
        try:
            response = await self._client.request(method, url, json=json, timeout=timeout)
        except httpx.HTTPError as e:
            logger.error(f"Upstream {method} {url} failed: {e!r}")
            raise UpstreamError(f"Failed on {record.id}", details=str(e) or type(e).__name__)

        logger.debug(f"Upstream {method} {url} -> {response.status_code}")
        return response

    async def open_stream(self, target: UpstreamTarget) -> httpx.Response:
        """
        Open the upstream start stream.

        Returns:
            A streaming response with a 2xx status; the caller owns it and
            must aclose() it.

        Raises:
            UpstreamConnectError: On transport failure (no status) or a
                non-2xx answer (upstream status and body attached).
        """
        request = self._stream_client.build_request(
            "GET", target.url, params=target.params, headers=_STREAM_HEADERS
        )
        try:
            response = await self._stream_client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamConnectError(
                f"Failed to connect to {target.base_url}",
                details=str(e) or type(e).__name__,
            )

        if response.is_success:
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError as e:
            body = str(e)
        finally:
            await response.aclose()

        raise UpstreamConnectError(
            f"Failed to connect to {target.base_url}",
            details=body[:_MAX_ERROR_BODY] or response.reason_phrase,
            upstream_status=response.status_code,
        )
