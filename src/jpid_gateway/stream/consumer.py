"""
Process Stream Consumer
=======================

Client for the gateway's start endpoint: subscribes to a relayed process
stream and yields frames as they arrive.

This module provides the ProcessStreamConsumer class which:
    - Opens GET /api/start/{server}/{type}/{pid} on the gateway
    - Parses the event stream with the same FrameCodec the relay uses
    - Pushes frames into a FrameBuffer from a background reader task
    - Ends the subscription after the first terminal frame
      (`complete` or `error`) or when the stream closes
    - Stops the remote process on request and cancels the subscription

Design Rules:
    - One consumer = one subscription; create a new one to restart
    - Cancellation is explicit: close() aborts the reader and the HTTP
      response; nothing is delivered afterwards
    - Does NOT reconnect; a lost connection ends in an `error` frame

Example:
    async with ProcessStreamConsumer("http://localhost:3000", "wsl", "42") as consumer:
        async for frame in consumer:
            print(frame.event_type, frame.data())
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx

from jpid_gateway.errors import StreamSubscribeError
from jpid_gateway.models.process import StartType, path_segment
from jpid_gateway.stream.buffer import BufferClosed, FrameBuffer
from jpid_gateway.stream.codec import FrameCodec
from jpid_gateway.stream.frame import Frame


logger = logging.getLogger(__name__)


class ProcessStreamConsumerMetrics:
    """Metrics for ProcessStreamConsumer observability."""

    __slots__ = (
        "frames_received",
        "bytes_received",
        "parse_errors",
        "last_event",
        "terminal_event",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.bytes_received: int = 0
        self.parse_errors: int = 0
        self.last_event: Optional[str] = None
        self.terminal_event: Optional[str] = None

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_received": self.frames_received,
            "bytes_received": self.bytes_received,
            "parse_errors": self.parse_errors,
            "last_event": self.last_event,
            "terminal_event": self.terminal_event,
        }


class ProcessStreamConsumer:
    """
    Subscriber for one relayed process stream.

    Attributes:
        gateway_url: Base URL of the gateway
        server_id: Registry id of the job server
        process_id: Process to start
        start_type: run or script
        background: Background flag for run starts
        session_id: Relay session id reported by the gateway
        metrics: Operational metrics

    Example:
        consumer = ProcessStreamConsumer(
            gateway_url="http://localhost:3000",
            server_id="wsl",
            process_id="42",
        )
        async for frame in consumer:
            if frame.event_type == "output":
                print(frame.data()["text"])
        await consumer.aclose()
    """

    def __init__(
        self,
        gateway_url: str,
        server_id: str,
        process_id: str,
        start_type: str = "run",
        background: bool = False,
        client: Optional[httpx.AsyncClient] = None,
        queue_size: int = 64,
        connect_timeout: float = 5.0,
    ) -> None:
        """
        Initialize process stream consumer.

        Args:
            gateway_url: Base URL of the gateway
            server_id: Registry id of the job server
            process_id: Process to start
            start_type: "run" or "script"
            background: Run in background (run starts only)
            client: Shared httpx client; one is created (and owned) if None
            queue_size: Frames buffered between reader and iterator
            connect_timeout: Connect timeout for an owned client
        """
        self.gateway_url = gateway_url.rstrip("/")
        self.server_id = server_id
        self.process_id = process_id
        self.start_type = StartType.parse(start_type)
        self.background = background

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect_timeout, read=None)
        )
        self.buffer = FrameBuffer(maxsize=queue_size)
        self.metrics = ProcessStreamConsumerMetrics()
        self.session_id: Optional[str] = None

        self._response: Optional[httpx.Response] = None
        self._reader: Optional[asyncio.Task] = None
        self._started: bool = False
        self._cancelled: bool = False

    @property
    def connected(self) -> bool:
        """Whether the subscription is open and being read."""
        return self._reader is not None and not self._reader.done()

    @property
    def start_url(self) -> str:
        return (
            f"{self.gateway_url}/api/start/{path_segment(self.server_id)}/"
            f"{self.start_type.value}/{path_segment(self.process_id)}"
        )

    def __aiter__(self) -> AsyncIterator[Frame]:
        return self.frames()

    async def frames(self) -> AsyncIterator[Frame]:
        """
        Subscribe and yield frames in arrival order.

        Raises:
            StreamSubscribeError: Gateway unreachable (502) or answered
                with a non-2xx status.
            RuntimeError: If called twice on the same consumer.
        """
        if self._started:
            raise RuntimeError("ProcessStreamConsumer can only be iterated once")
        self._started = True

        try:
            await self._subscribe()
            while True:
                frame = await self.buffer.get()
                if frame is None:
                    break
                yield frame
                if frame.is_terminal:
                    break
        finally:
            await self.close()

    async def _subscribe(self) -> None:
        params = {}
        if self.start_type is StartType.RUN:
            params["background"] = "true" if self.background else "false"

        request = self._client.build_request("GET", self.start_url, params=params)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.warning(f"Subscription to {self.start_url} failed: {e!r}")
            raise StreamSubscribeError(502, str(e) or type(e).__name__)

        if not response.is_success:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            logger.warning(f"Subscription to {self.start_url} rejected: {response.status_code}")
            raise StreamSubscribeError(response.status_code, body)

        self._response = response
        self.session_id = response.headers.get("x-relay-session")
        logger.info(
            f"Subscribed to {self.server_id}/{self.process_id} "
            f"(session {self.session_id or 'unknown'})"
        )
        self._reader = asyncio.create_task(
            self._read(response),
            name=f"consumer-{self.server_id}-{self.process_id}",
        )

    async def _read(self, response: httpx.Response) -> None:
        """Reader task: bytes -> frames -> buffer."""
        codec = FrameCodec()
        try:
            async for chunk in response.aiter_bytes():
                self.metrics.bytes_received += len(chunk)
                for frame in codec.ingest(chunk):
                    self._record(frame)
                    await self.buffer.put(frame)

            tail = codec.flush()
            if tail is not None:
                self._record(tail)
                await self.buffer.put(tail)

        except BufferClosed:
            pass
        except httpx.HTTPError as e:
            if not self._cancelled:
                logger.warning(f"Stream from {self.start_url} lost: {e!r}")
                frame = Frame.error("Connection lost", str(e) or type(e).__name__)
                self._record(frame)
                try:
                    await self.buffer.put(frame)
                except BufferClosed:
                    pass
        finally:
            self.metrics.parse_errors = codec.parse_errors
            await response.aclose()
            self.buffer.close()

    def _record(self, frame: Frame) -> None:
        self.metrics.frames_received += 1
        self.metrics.last_event = frame.event_type
        if frame.is_terminal and self.metrics.terminal_event is None:
            self.metrics.terminal_event = frame.event_type

    async def stop(self, wait_seconds: float = 0.5) -> dict:
        """
        Stop the remote process, then end the subscription.

        The stop call is an ordinary proxied request. The stream usually
        ends by itself once the process dies; after wait_seconds the
        subscription is cancelled regardless.

        Returns:
            The gateway's JSON answer to the stop call.

        Raises:
            StreamSubscribeError: If the stop call failed or was rejected.
        """
        url = (
            f"{self.gateway_url}/api/stop/"
            f"{path_segment(self.server_id)}/{path_segment(self.process_id)}"
        )
        try:
            response = await self._client.post(url)
        except httpx.HTTPError as e:
            raise StreamSubscribeError(502, str(e) or type(e).__name__)
        if not response.is_success:
            raise StreamSubscribeError(response.status_code, response.text)

        logger.info(f"Stop requested for {self.server_id}/{self.process_id}")
        if self._reader is not None and wait_seconds > 0:
            await asyncio.wait({self._reader}, timeout=wait_seconds)
        await self.close()

        try:
            return response.json()
        except ValueError:
            return {"message": response.text}

    async def close(self) -> None:
        """
        Cancel the subscription. Idempotent.

        Queued frames are discarded and the HTTP response is closed.
        """
        if self._cancelled:
            return
        self._cancelled = True

        self.buffer.abort()
        reader = self._reader
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.wait({reader})
        elif self._response is not None and reader is None:
            await self._response.aclose()

    async def aclose(self) -> None:
        """Close the subscription and the owned HTTP client."""
        await self.close()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ProcessStreamConsumer":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
