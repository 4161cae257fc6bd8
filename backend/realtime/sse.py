from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class SSEFrame:
    event: str
    data: str


def encode_frame(event: str, data: str) -> str:
    lines = "".join(f"data: {line}\n" for line in data.splitlines() or [""])
    return f"event: {event}\n{lines}\n"


class SSEFrameParser:
    """Incremental parser for ``text/event-stream`` lines."""

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, raw_line: str) -> SSEFrame | None:
        line = raw_line.rstrip("\r\n")
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None

    def flush(self) -> SSEFrame | None:
        return self._dispatch()

    def _dispatch(self) -> SSEFrame | None:
        if self._event is None and not self._data:
            return None
        frame = SSEFrame(event=self._event or "message", data="\n".join(self._data))
        self._event = None
        self._data = []
        return frame


def parse_sse_events(payload_text: str) -> list[dict[str, Any]]:
    parser = SSEFrameParser()
    events: list[dict[str, Any]] = []
    for line in payload_text.splitlines():
        frame = parser.feed(line)
        if frame is not None:
            events.append({"event": frame.event, "data": frame.data})
    frame = parser.flush()
    if frame is not None:
        events.append({"event": frame.event, "data": frame.data})
    return events
