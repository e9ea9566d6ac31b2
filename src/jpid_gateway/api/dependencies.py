"""FastAPI dependencies exposing the components built in the app lifespan."""

from fastapi import Request

from jpid_gateway.registry import ServerRegistry
from jpid_gateway.stream.relay import StreamRelay
from jpid_gateway.upstream import UpstreamClient


def get_registry(request: Request) -> ServerRegistry:
    return request.app.state.registry


def get_upstream(request: Request) -> UpstreamClient:
    return request.app.state.upstream


def get_relay(request: Request) -> StreamRelay:
    return request.app.state.relay
