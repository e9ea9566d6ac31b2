"""
Stream Relay
============

Relays one upstream start stream to one downstream client.

Each accepted start request becomes a RelaySession with two legs:

    upstream response --(producer task)--> FrameCodec --> FrameBuffer
    FrameBuffer --(response body iterator)--> downstream client

State machine:
    PENDING --connect ok--> STREAMING --end of stream--> COMPLETED
       |                        |------upstream error---> FAILED
       |                        |------client gone------> CANCELLED
       |--connect failed/non-2xx--> FAILED

Terminal states are final. Once CANCELLED nothing more is written
downstream and the upstream request is aborted by cancelling the
producer task (its finally block closes the upstream response).

Client disconnect is observed three ways, whichever comes first:
    - the ASGI server cancels or closes the body iterator
    - the response wrapper's finally block (any exit path)
    - a watcher polling Request.is_disconnected(), which also covers an
      upstream that stays silent for a long time

Design Rules:
    - Sessions share nothing: codec, buffer and upstream response are
      per session
    - Frames go downstream in exactly the order they were parsed
    - Errors before streaming raise UpstreamConnectError (HTTP error
      response); errors after streaming become an in-band `error` frame
    - Concurrent starts of the same process are independent unless
      supersede_existing is enabled
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from jpid_gateway.config import RelayConfig
from jpid_gateway.errors import UpstreamConnectError, UpstreamStreamError
from jpid_gateway.models.process import UpstreamTarget
from jpid_gateway.stream.buffer import BufferClosed, FrameBuffer
from jpid_gateway.stream.codec import FrameCodec
from jpid_gateway.stream.frame import Frame
from jpid_gateway.upstream import UpstreamClient


logger = logging.getLogger(__name__)


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class RelayState(str, Enum):
    """
    Lifecycle states of a relay session.

    Attributes:
        PENDING: Created, upstream not yet connected
        STREAMING: Upstream connected, frames flowing
        COMPLETED: Upstream ended normally
        FAILED: Upstream could not connect or broke mid-stream
        CANCELLED: Downstream went away (or session was superseded)
    """

    PENDING = "PENDING"
    STREAMING = "STREAMING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({RelayState.COMPLETED, RelayState.FAILED, RelayState.CANCELLED})

_TRANSITIONS = {
    RelayState.PENDING: frozenset({RelayState.STREAMING, RelayState.FAILED, RelayState.CANCELLED}),
    RelayState.STREAMING: _TERMINAL,
}


class RelayMetrics:
    """Metrics for StreamRelay observability."""

    __slots__ = (
        "sessions_started",
        "sessions_completed",
        "sessions_failed",
        "sessions_cancelled",
        "connect_errors",
        "frames_relayed",
        "parse_errors",
    )

    def __init__(self) -> None:
        self.sessions_started: int = 0
        self.sessions_completed: int = 0
        self.sessions_failed: int = 0
        self.sessions_cancelled: int = 0
        self.connect_errors: int = 0
        self.frames_relayed: int = 0
        self.parse_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "sessions_started": self.sessions_started,
            "sessions_completed": self.sessions_completed,
            "sessions_failed": self.sessions_failed,
            "sessions_cancelled": self.sessions_cancelled,
            "connect_errors": self.connect_errors,
            "frames_relayed": self.frames_relayed,
            "parse_errors": self.parse_errors,
        }


class RelaySession:
    """
    Live state of one proxied start stream.

    Owns its upstream response, codec and buffer exclusively.

    Attributes:
        session_id: Identifier returned to the client (X-Relay-Session)
        server_id: Registry id of the upstream server
        target: Resolved upstream start request
        state: Current RelayState
        codec: Per-session FrameCodec (holds the residual buffer)
        buffer: Per-session FrameBuffer between the two legs
        frames_written: Frames handed to the downstream connection
    """

    def __init__(
        self,
        server_id: str,
        target: UpstreamTarget,
        queue_size: int = 8,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.server_id = server_id
        self.target = target
        self.state = RelayState.PENDING
        self.codec = FrameCodec()
        self.buffer = FrameBuffer(maxsize=queue_size)
        self.frames_written: int = 0
        self.created_at: float = time.time()
        self.ended_at: Optional[float] = None
        self.end_reason: Optional[str] = None

        self._upstream: Optional[httpx.Response] = None
        self._producer: Optional[asyncio.Task] = None
        self._finished: bool = False

    @property
    def process_id(self) -> str:
        return self.target.process_id

    @property
    def terminated(self) -> bool:
        return self.state.is_terminal

    def _transition(self, new_state: RelayState, reason: str = "") -> bool:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            return False

        logger.info(
            f"Relay {self.session_id[:8]} ({self.server_id}/{self.process_id}): "
            f"{self.state.value} -> {new_state.value}" + (f" ({reason})" if reason else "")
        )
        self.state = new_state
        if new_state.is_terminal:
            self.ended_at = time.time()
            self.end_reason = reason or new_state.value.lower()
        return True

    # -------------------------------------------------------------------------
    # Upstream leg
    # -------------------------------------------------------------------------

    async def connect(self, upstream: UpstreamClient) -> None:
        """
        Open the upstream stream and move to STREAMING.

        Raises:
            UpstreamConnectError: Session moves to FAILED first.
        """
        try:
            self._upstream = await upstream.open_stream(self.target)
        except UpstreamConnectError as e:
            self._transition(RelayState.FAILED, e.details or e.message)
            raise

        if not self._transition(RelayState.STREAMING):
            # Cancelled while connecting
            await self._upstream.aclose()
            return

        self._producer = asyncio.create_task(
            self._pump(self._upstream),
            name=f"relay-{self.session_id[:8]}",
        )

    async def _pump(self, response: httpx.Response) -> None:
        """Read upstream chunks, parse them, queue frames in order."""
        try:
            async for chunk in response.aiter_bytes():
                for frame in self.codec.ingest(chunk):
                    await self.buffer.put(frame)

            tail = self.codec.flush()
            if tail is not None:
                await self.buffer.put(tail)
            await self.buffer.put(Frame.complete(self.process_id))
            self._transition(RelayState.COMPLETED, "upstream finished")

        except BufferClosed:
            # Cancelled between two frames
            pass
        except Exception as e:
            error = UpstreamStreamError("Stream error", details=str(e) or type(e).__name__)
            logger.error(
                f"Relay {self.session_id[:8]} upstream stream error "
                f"({self.server_id}/{self.process_id}): {e!r}"
            )
            if self._transition(RelayState.FAILED, error.details):
                await self._put_quietly(
                    Frame.error(
                        error.message,
                        error.details,
                        pid=self.process_id,
                        server=self.server_id,
                    )
                )
        finally:
            await response.aclose()
            self.buffer.close()

    async def _put_quietly(self, frame: Frame) -> None:
        try:
            await self.buffer.put(frame)
        except BufferClosed:
            pass

    # -------------------------------------------------------------------------
    # Downstream leg
    # -------------------------------------------------------------------------

    async def stream(self) -> AsyncIterator[bytes]:
        """
        Encoded frames for the downstream connection.

        Ends after the terminal frame, or immediately on cancellation.
        Closing this iterator early cancels the session.
        """
        try:
            while True:
                frame = await self.buffer.get()
                if frame is None or self.state is RelayState.CANCELLED:
                    break
                self.frames_written += 1
                yield FrameCodec.encode(frame)
        finally:
            self.cancel("downstream closed")

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Cancel the session and abort the upstream request.

        Idempotent; a session already in a terminal state is left alone.

        Returns:
            True if this call cancelled the session.
        """
        if not self._transition(RelayState.CANCELLED, reason):
            return False

        self.buffer.abort()
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
        return True

    async def wait_closed(self) -> None:
        """Wait until the upstream leg has fully shut down."""
        if self._producer is not None:
            await asyncio.wait({self._producer})

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "server_id": self.server_id,
            "process_id": self.process_id,
            "start_type": self.target.start_type.value,
            "background": self.target.background,
            "state": self.state.value,
            "frames_written": self.frames_written,
            "created_at": self.created_at,
            "ended_at": self.ended_at,
            "codec": self.codec.metrics(),
        }


class RelayResponse(StreamingResponse):
    """
    Event-stream response bound to one relay session.

    Whatever way the response ends, the session is cancelled (a no-op
    once terminal) and released from the relay.
    """

    def __init__(
        self,
        relay: "StreamRelay",
        session: RelaySession,
        disconnect_poll_seconds: float = 0.0,
    ) -> None:
        headers = dict(SSE_HEADERS)
        headers["X-Relay-Session"] = session.session_id
        super().__init__(
            session.stream(),
            status_code=200,
            headers=headers,
            media_type="text/event-stream",
        )
        self.relay = relay
        self.session = session
        self.disconnect_poll_seconds = disconnect_poll_seconds

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        watcher: Optional[asyncio.Task] = None
        if self.disconnect_poll_seconds > 0:
            watcher = asyncio.create_task(
                self._watch_disconnect(Request(scope, receive)),
                name=f"relay-watch-{self.session.session_id[:8]}",
            )
        try:
            await super().__call__(scope, receive, send)
        finally:
            if watcher is not None:
                watcher.cancel()
            self.session.cancel("downstream closed")
            self.relay.release(self.session)

    async def _watch_disconnect(self, request: Request) -> None:
        while not self.session.terminated:
            if await request.is_disconnected():
                self.session.cancel("client disconnected")
                return
            await asyncio.sleep(self.disconnect_poll_seconds)


class StreamRelay:
    """
    Owner of all live relay sessions.

    Attributes:
        upstream: Shared upstream client
        queue_size: FrameBuffer size for new sessions
        disconnect_poll_seconds: Watcher interval (0 disables the watcher)
        supersede_existing: Cancel an active session for the same
            (server, process) when a new one starts
        metrics: Aggregate counters

    Example:
        relay = StreamRelay(upstream)
        response = await relay.start("wsl", target)
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        queue_size: int = 8,
        disconnect_poll_seconds: float = 0.5,
        supersede_existing: bool = False,
    ) -> None:
        self.upstream = upstream
        self.queue_size = queue_size
        self.disconnect_poll_seconds = disconnect_poll_seconds
        self.supersede_existing = supersede_existing
        self.metrics = RelayMetrics()
        self._sessions: Dict[str, RelaySession] = {}

    @classmethod
    def from_settings(cls, upstream: UpstreamClient, config: RelayConfig) -> "StreamRelay":
        return cls(
            upstream,
            queue_size=config.queue_size,
            disconnect_poll_seconds=config.disconnect_poll_seconds,
            supersede_existing=config.supersede_existing,
        )

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[RelaySession]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> Optional[RelaySession]:
        return self._sessions.get(session_id)

    async def open(self, server_id: str, target: UpstreamTarget) -> RelaySession:
        """
        Create a session and connect its upstream leg.

        Raises:
            UpstreamConnectError: Upstream unreachable or non-2xx.
        """
        if self.supersede_existing:
            for existing in self.sessions():
                if existing.server_id == server_id and existing.process_id == target.process_id:
                    existing.cancel("superseded by a new start")

        session = RelaySession(server_id, target, queue_size=self.queue_size)
        self.metrics.sessions_started += 1
        logger.info(
            f"Relay {session.session_id[:8]}: starting {target.start_type.value} "
            f"{server_id}/{target.process_id} -> {target.url}"
        )

        try:
            await session.connect(self.upstream)
        except UpstreamConnectError as e:
            self.metrics.connect_errors += 1
            self.metrics.sessions_failed += 1
            logger.warning(
                f"Relay {session.session_id[:8]}: upstream connect failed "
                f"(status={e.upstream_status}): {e.details}"
            )
            raise

        self._sessions[session.session_id] = session
        return session

    def response(self, session: RelaySession) -> RelayResponse:
        return RelayResponse(self, session, self.disconnect_poll_seconds)

    async def start(self, server_id: str, target: UpstreamTarget) -> RelayResponse:
        """Open a session and wrap it in a streaming response."""
        session = await self.open(server_id, target)
        return self.response(session)

    def release(self, session: RelaySession) -> None:
        """Forget a finished session and fold it into the metrics. Idempotent."""
        if session._finished:
            return
        session._finished = True
        self._sessions.pop(session.session_id, None)

        if session.state is RelayState.COMPLETED:
            self.metrics.sessions_completed += 1
        elif session.state is RelayState.FAILED:
            self.metrics.sessions_failed += 1
        elif session.state is RelayState.CANCELLED:
            self.metrics.sessions_cancelled += 1
        self.metrics.frames_relayed += session.frames_written
        self.metrics.parse_errors += session.codec.parse_errors

    async def shutdown(self) -> None:
        """Cancel every live session and wait for upstream legs to close."""
        sessions = self.sessions()
        if sessions:
            logger.info(f"Cancelling {len(sessions)} active relay sessions")
        for session in sessions:
            session.cancel("gateway shutdown")
        for session in sessions:
            await session.wait_closed()
            self.release(session)
