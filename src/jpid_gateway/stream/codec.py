"""
Frame Codec
===========

Incremental parser and serializer for the upstream event-stream grammar.

Wire grammar (both directions):

    event: <type>\\n
    data: <payload>\\n
    \\n

Frames are separated by a blank line. A missing `event:` line means type
"message". Lines that are neither `event:` nor `data:` (e.g. `: keepalive`
comments) are ignored; a segment with no `data:` line yields nothing.

Design Rules:
    - Chunk boundaries are irrelevant: the residual buffer carries any
      partial segment into the next ingest() call
    - Delimiting happens on raw bytes, so a multi-byte UTF-8 character
      split across chunks is decoded only once complete
    - Payloads leave the codec as valid JSON; non-JSON text is wrapped
      as {"text": ...}
    - A malformed segment degrades to one `error` frame, never an exception
    - One codec per stream; the residual buffer is never shared

Example:
    codec = FrameCodec()
    for chunk in chunks:
        for frame in codec.ingest(chunk):
            out.write(FrameCodec.encode(frame))
    tail = codec.flush()
"""

import json
import logging
import re
from typing import Any, List, Optional

from jpid_gateway.errors import FrameParseError
from jpid_gateway.stream.frame import DEFAULT_EVENT, Frame, dump_json


logger = logging.getLogger(__name__)


# Blank line, tolerating CRLF line endings from the upstream
_DELIMITER = re.compile(rb"\r?\n\r?\n")
_LINE_BREAK = re.compile(r"\r?\n")

_EVENT_PREFIX = "event:"
_DATA_PREFIX = "data:"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def is_json(text: str) -> bool:
    """Whether text is a strict JSON document (no NaN/Infinity)."""
    try:
        json.loads(text, parse_constant=_reject_constant)
    except ValueError:
        return False
    return True


def as_json_payload(text: str) -> str:
    """Keep JSON text unchanged, wrap anything else as {"text": ...}."""
    if is_json(text):
        return text
    return dump_json({"text": text})


class FrameCodec:
    """
    Stateful frame parser for one stream.

    Attributes:
        residual: Bytes received but not yet resolved into a frame
        frames_parsed: Frames produced by ingest() (error frames included)
        segments_dropped: Segments skipped because they had no data line
        parse_errors: Segments that degraded to an error frame
    """

    def __init__(self) -> None:
        self._residual: bytes = b""
        self.frames_parsed: int = 0
        self.segments_dropped: int = 0
        self.parse_errors: int = 0

    @property
    def residual(self) -> bytes:
        return self._residual

    def ingest(self, chunk: bytes) -> List[Frame]:
        """
        Feed one upstream chunk.

        Args:
            chunk: Raw bytes as received (any size, any boundary)

        Returns:
            Frames completed by this chunk, in stream order.
        """
        if not chunk:
            return []

        buffer = self._residual + chunk
        frames: List[Frame] = []
        start = 0

        for match in _DELIMITER.finditer(buffer):
            segment = buffer[start:match.start()]
            start = match.end()

            frame = self._parse_segment(segment)
            if frame is None:
                self.segments_dropped += 1
                continue
            frames.append(frame)

        self._residual = buffer[start:]
        self.frames_parsed += len(frames)
        return frames

    def flush(self) -> Optional[Frame]:
        """
        Resolve whatever is left at upstream end-of-stream.

        The residual is emitted as a single `message` frame with its
        trimmed text. Whitespace-only residue yields nothing.

        Returns:
            The recovered frame, or None.
        """
        residual, self._residual = self._residual, b""
        text = residual.decode("utf-8", errors="replace").strip()
        if not text:
            return None

        logger.debug(f"Flushing {len(residual)} residual bytes as a message frame")
        return Frame(DEFAULT_EVENT, as_json_payload(text))

    @staticmethod
    def encode(frame: Frame) -> bytes:
        """
        Serialize a frame to the downstream wire format.

        Multi-line payloads are written as one data line per line, which
        event-stream clients join back with newlines.
        """
        lines = [f"event: {frame.event_type}"]
        lines.extend(
            f"data: {line}" for line in _LINE_BREAK.split(frame.payload)
        )
        return ("\n".join(lines) + "\n\n").encode("utf-8")

    def _parse_segment(self, segment: bytes) -> Optional[Frame]:
        """Parse one delimited segment, degrading errors to an error frame."""
        try:
            return self._parse_fields(segment)
        except FrameParseError as e:
            self.parse_errors += 1
            logger.warning(f"Message parsing error: {e}")
            return Frame.error(
                "Message parsing error",
                str(e),
                originalMessage=e.segment,
            )

    @staticmethod
    def _parse_fields(segment: bytes) -> Optional[Frame]:
        try:
            text = segment.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameParseError(
                f"segment is not valid UTF-8: {e.reason}",
                segment.decode("utf-8", errors="replace"),
            )

        event_type = DEFAULT_EVENT
        data_lines: List[str] = []
        seen_event = False

        for line in _LINE_BREAK.split(text):
            if line.startswith(_EVENT_PREFIX):
                if not seen_event:
                    event_type = line[len(_EVENT_PREFIX):].strip() or DEFAULT_EVENT
                    seen_event = True
            elif line.startswith(_DATA_PREFIX):
                data_lines.append(line[len(_DATA_PREFIX):].strip())

        if not data_lines:
            return None

        return Frame(event_type, as_json_payload("\n".join(data_lines)))

    def metrics(self) -> dict:
        """
        Get codec counters for observability.

        Returns:
            Dict with frames_parsed, segments_dropped, parse_errors,
            residual_bytes
        """
        return {
            "frames_parsed": self.frames_parsed,
            "segments_dropped": self.segments_dropped,
            "parse_errors": self.parse_errors,
            "residual_bytes": len(self._residual),
        }
