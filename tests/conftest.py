"""
Test Configuration
==================

Pytest fixtures and test configuration for the jpid gateway.

Upstream job servers are simulated with httpx.MockTransport; streamed
bodies come from ScriptedStream, which records whether the relay closed
it.
"""

import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from jpid_gateway.config import (
    RegistryConfig,
    RelayConfig,
    SeedServer,
    Settings,
    UpstreamConfig,
)
from jpid_gateway.main import create_app
from jpid_gateway.models.registry import ServerRecord
from jpid_gateway.upstream import UpstreamClient


JOB_SERVER_URL = "http://job.local"


class ScriptedStream(httpx.AsyncByteStream):
    """
    Upstream response body that yields fixed chunks.

    Args:
        chunks: Byte chunks to send, in order
        error: Raised after the last chunk (mid-stream failure)
        hang: Stay open after the last chunk until closed
    """

    def __init__(
        self,
        chunks: Iterable[bytes],
        error: Optional[Exception] = None,
        hang: bool = False,
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.sent = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            self.sent += 1
            yield chunk
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


Handler = Callable[[httpx.Request], httpx.Response]


class FakeJobServer:
    """Scriptable job server reachable through MockTransport."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.streams: List[ScriptedStream] = []
        self._routes: Dict[Tuple[str, str], Handler] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def on(self, method: str, path: str, handler: Handler) -> None:
        self._routes[(method, path)] = handler

    def json(self, method: str, path: str, body, status: int = 200) -> None:
        self.on(method, path, lambda request: httpx.Response(status, json=body))

    def fail(self, method: str, path: str, error: Exception) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error

        self.on(method, path, handler)

    def stream(
        self,
        path: str,
        chunks: Iterable[bytes],
        error: Optional[Exception] = None,
        hang: bool = False,
    ) -> None:
        chunks = list(chunks)

        def handler(request: httpx.Request) -> httpx.Response:
            body = ScriptedStream(chunks, error=error, hang=hang)
            self.streams.append(body)
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                stream=body,
            )

        self.on("GET", path, handler)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "no such route"})
        return handler(request)


@pytest.fixture
def job_server() -> FakeJobServer:
    return FakeJobServer()


@pytest.fixture
def gateway() -> FakeJobServer:
    """Stand-in for the gateway itself, used by client consumer tests."""
    return FakeJobServer()


@pytest.fixture
def record() -> ServerRecord:
    return ServerRecord(id="wsl", url=JOB_SERVER_URL, description="wsl box")


@pytest.fixture
def settings() -> Settings:
    """Settings with one seeded server and a fast disconnect watcher."""
    return Settings(
        upstream=UpstreamConfig(api_prefix="/jpid"),
        relay=RelayConfig(queue_size=4, disconnect_poll_seconds=0.05),
        registry=RegistryConfig(
            servers=[SeedServer(id="wsl", url=JOB_SERVER_URL, description="wsl box")],
        ),
    )


@pytest.fixture
def app(settings, job_server):
    return create_app(settings, transport=job_server.transport)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def upstream(job_server):
    client = UpstreamClient.create(UpstreamConfig(), transport=job_server.transport)
    yield client
    await client.aclose()
