"""
Frame Data Model
=================

Internal frame representation for the streaming relay.

A Frame is one blank-line-delimited unit of the server-sent-event
grammar spoken by the upstream job servers:

    event: <event_type>
    data: <payload>

Design Rules:
    - event_type defaults to "message"
    - payload is ALWAYS the text of a valid JSON document
    - Frames are values: immutable, no identity beyond stream position
"""

import json
from dataclasses import dataclass
from typing import Any, Optional


DEFAULT_EVENT = "message"
COMPLETE_EVENT = "complete"
ERROR_EVENT = "error"

TERMINAL_EVENTS = frozenset({COMPLETE_EVENT, ERROR_EVENT})


def dump_json(value: Any) -> str:
    """Compact JSON, non-ASCII kept as-is."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One relayed stream frame.

    Attributes:
        event_type: SSE event name ("message" when the upstream omits it)
        payload: JSON document text, written verbatim to the data field

    Example:
        frame = Frame.text("output", "hello")
        frame.payload   # '{"text":"hello"}'
        frame.data()    # {'text': 'hello'}
    """

    event_type: str
    payload: str

    @classmethod
    def of(cls, event_type: str, value: Any) -> "Frame":
        """Build a frame by JSON-serializing value."""
        return cls(event_type or DEFAULT_EVENT, dump_json(value))

    @classmethod
    def text(cls, event_type: str, text: str) -> "Frame":
        """Wrap plain text as {"text": ...}."""
        return cls.of(event_type, {"text": text})

    @classmethod
    def error(
        cls,
        error: str,
        details: Optional[str] = None,
        **extra: Any,
    ) -> "Frame":
        """Build an in-band error frame."""
        body = {"error": error, "details": details}
        body.update(extra)
        return cls.of(ERROR_EVENT, body)

    @classmethod
    def complete(cls, process_id: str) -> "Frame":
        """Synthetic end-of-stream frame emitted by the relay."""
        return cls.of(
            COMPLETE_EVENT,
            {
                "status": "complete",
                "message": f"Stream completed for {process_id}",
            },
        )

    @property
    def is_terminal(self) -> bool:
        """Whether a subscriber should stop after this frame."""
        return self.event_type in TERMINAL_EVENTS

    def data(self) -> Any:
        """Decode the JSON payload."""
        return json.loads(self.payload)

    def __repr__(self) -> str:
        """Compact repr that truncates long payloads."""
        payload = self.payload if len(self.payload) <= 60 else self.payload[:57] + "..."
        return f"Frame(event_type={self.event_type!r}, payload={payload!r})"
