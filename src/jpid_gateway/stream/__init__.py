"""
Stream Module
=============

Event-stream framing, buffering and relaying components.

This module provides the streaming core of the jpid gateway:
    - Frame: One server-sent event (type + JSON payload)
    - FrameCodec: Incremental byte -> frame parser and frame encoder
    - FrameBuffer: Async-safe bounded queue (back-pressure, never drops)
    - RelaySession / StreamRelay: Upstream-to-downstream relay with
      cancellation on client disconnect
    - ProcessStreamConsumer: Client that subscribes to a relayed stream

Example:
    from jpid_gateway.stream import FrameCodec

    codec = FrameCodec()
    for frame in codec.ingest(b'event: output\\ndata: {"text":"hi"}\\n\\n'):
        print(frame.event_type, frame.data())
"""

from jpid_gateway.stream.frame import Frame
from jpid_gateway.stream.codec import FrameCodec
from jpid_gateway.stream.buffer import BufferClosed, FrameBuffer
from jpid_gateway.stream.relay import (
    RelayMetrics,
    RelayResponse,
    RelaySession,
    RelayState,
    StreamRelay,
)
from jpid_gateway.stream.consumer import (
    ProcessStreamConsumer,
    ProcessStreamConsumerMetrics,
)


__all__ = [
    "Frame",
    "FrameCodec",
    "BufferClosed",
    "FrameBuffer",
    "RelayMetrics",
    "RelayResponse",
    "RelaySession",
    "RelayState",
    "StreamRelay",
    "ProcessStreamConsumer",
    "ProcessStreamConsumerMetrics",
]
