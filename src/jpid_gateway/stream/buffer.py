"""
Frame Buffer
=============

Async bounded queue between the two legs of a relay session.

The upstream reader puts frames in, the downstream writer takes them
out. It is the ONLY channel between the two legs of one session.

Design Rules:
    - Fixed maximum size; a full buffer suspends the producer
      (back-pressure), frames are never dropped
    - Strict FIFO: frames leave in the order they were parsed
    - close() marks end-of-stream; get() returns None once drained
    - Does NOT process or modify frames
"""

import asyncio
import logging
from typing import Optional

from jpid_gateway.stream.frame import Frame


logger = logging.getLogger(__name__)


class BufferClosed(Exception):
    """Raised by put() after close()."""


class FrameBuffer:
    """
    Ordered, back-pressured frame queue for one relay session.

    Capacity is tracked with a semaphore so the end-of-stream marker can
    always be queued, even when the buffer is full.

    Attributes:
        maxsize: Maximum number of frames held before put() waits
        closed: Whether the producer side has finished

    Example:
        buffer = FrameBuffer(maxsize=8)

        # Producer (upstream leg)
        await buffer.put(frame)
        buffer.close()

        # Consumer (downstream leg)
        while (frame := await buffer.get()) is not None:
            write(frame)
    """

    def __init__(self, maxsize: int = 8) -> None:
        """
        Initialize frame buffer.

        Args:
            maxsize: Maximum frames to buffer. Must be >= 1.
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._maxsize = maxsize
        self._queue: asyncio.Queue[Optional[Frame]] = asyncio.Queue()
        self._slots = asyncio.Semaphore(maxsize)
        self._closed: bool = False
        self._total_put: int = 0
        self._total_get: int = 0
        self._discarded: int = 0
        self._producer_waits: int = 0

    @property
    def maxsize(self) -> int:
        """Maximum buffer size."""
        return self._maxsize

    @property
    def size(self) -> int:
        """Current number of frames in buffer."""
        return self._total_put - self._total_get - self._discarded

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def total_put(self) -> int:
        """Total frames ever put into buffer."""
        return self._total_put

    async def put(self, frame: Frame) -> None:
        """
        Append a frame, waiting while the buffer is full.

        Args:
            frame: Frame to add

        Raises:
            BufferClosed: If close() was already called.
        """
        if self._closed:
            raise BufferClosed("put() on a closed FrameBuffer")

        if self._slots.locked():
            self._producer_waits += 1
            logger.debug("Buffer full, waiting for downstream to drain")

        await self._slots.acquire()
        if self._closed:
            # Aborted while waiting for a slot
            self._slots.release()
            raise BufferClosed("FrameBuffer closed while waiting")
        self._queue.put_nowait(frame)
        self._total_put += 1

    async def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Get next frame from buffer.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next frame, or None when the buffer is closed and drained
            (or on timeout).
        """
        try:
            if timeout is not None:
                frame = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            else:
                frame = await self._queue.get()
        except asyncio.TimeoutError:
            return None

        if frame is None:
            # Keep the end marker visible to any later get()
            self._queue.put_nowait(None)
            return None

        self._slots.release()
        self._total_get += 1
        return frame

    def close(self) -> None:
        """
        Mark end-of-stream.

        Frames already queued remain readable. Safe to call repeatedly.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    def abort(self) -> int:
        """
        Discard queued frames and close immediately.

        Used on cancellation, when nothing more may be written downstream.

        Returns:
            Number of frames discarded.
        """
        cleared = self.clear()
        self.close()
        return cleared

    def clear(self) -> int:
        """
        Clear all queued frames (the end marker, if present, is kept).

        Returns:
            Number of frames cleared.
        """
        cleared = 0
        ended = False
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is None:
                ended = True
                continue
            self._slots.release()
            cleared += 1
        if ended:
            self._queue.put_nowait(None)
        self._discarded += cleared
        return cleared

    def metrics(self) -> dict:
        """
        Get buffer metrics for observability.

        Returns:
            Dict with size, maxsize, total_put, total_get, producer_waits
        """
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "total_put": self._total_put,
            "total_get": self._total_get,
            "producer_waits": self._producer_waits,
        }
