"""Server-sent event framing and typed Anthropic stream events.

SSEDecoder turns raw response bytes into SSEMessage frames incrementally,
so it can sit directly on ``response.aiter_bytes()``. ``parse_event``
turns a frame into one of the typed stream events below, and
``encode_event`` writes any event back out in the same framing.

Events keep their original JSON payload in ``data`` so anything the
rewriter does not touch is forwarded byte-for-byte equivalent.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

logger = logging.getLogger(__name__)


@dataclass
class SSEMessage:
    """One dispatched SSE frame."""

    event: str | None = None
    data: str = ""
    id: str | None = None
    retry: int | None = None


class SSEDecoder:
    """Incremental SSE parser following the WHATWG framing rules."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._reset()

    def _reset(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []
        self._id: str | None = None
        self._retry: int | None = None

    def _dispatch(self) -> SSEMessage | None:
        if not self._data and self._event is None:
            self._reset()
            return None
        message = SSEMessage(
            event=self._event, data="\n".join(self._data), id=self._id, retry=self._retry
        )
        self._reset()
        return message

    def _process_line(self, line: str) -> SSEMessage | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        elif name == "retry" and value.isdigit():
            self._retry = int(value)
        return None

    def feed(self, chunk: bytes | str) -> list[SSEMessage]:
        """Consume a chunk and return every frame it completed."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        messages = []
        while True:
            # A trailing "\r" may be the first half of "\r\n"; wait for more input
            end = -1
            for index, char in enumerate(self._buffer):
                if char == "\n" or (char == "\r" and index + 1 < len(self._buffer)):
                    end = index
                    break
            if end < 0:
                break

            line = self._buffer[:end]
            skip = 2 if self._buffer[end] == "\r" and self._buffer[end + 1] == "\n" else 1
            self._buffer = self._buffer[end + skip :]

            message = self._process_line(line)
            if message is not None:
                messages.append(message)
        return messages

    def flush(self) -> list[SSEMessage]:
        """Dispatch whatever remains once the stream has ended."""
        tail = self._decoder.decode(b"", final=True)
        messages = self.feed(tail) if tail else []
        if self._buffer:
            line = self._buffer.rstrip("\r")
            self._buffer = ""
            self._process_line(line)
        message = self._dispatch()
        if message is not None:
            messages.append(message)
        return messages


# =============================================================================
# Typed stream events
# =============================================================================


@dataclass
class MessageStart:
    type: ClassVar[str] = "message_start"
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> dict[str, Any]:
        return self.data.get("message") or {}


@dataclass
class ContentBlockStart:
    type: ClassVar[str] = "content_block_start"
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def index(self) -> int:
        return int(self.data.get("index", 0))

    @property
    def content_block(self) -> dict[str, Any]:
        return self.data.get("content_block") or {}


@dataclass
class ContentBlockDelta:
    type: ClassVar[str] = "content_block_delta"
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def index(self) -> int:
        return int(self.data.get("index", 0))

    @property
    def delta(self) -> dict[str, Any]:
        return self.data.get("delta") or {}

    @property
    def partial_json(self) -> str | None:
        if self.delta.get("type") == "input_json_delta":
            return self.delta.get("partial_json", "")
        return None


@dataclass
class ContentBlockStop:
    type: ClassVar[str] = "content_block_stop"
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def index(self) -> int:
        return int(self.data.get("index", 0))


@dataclass
class MessageDelta:
    type: ClassVar[str] = "message_delta"
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def usage(self) -> dict[str, Any] | None:
        return self.data.get("usage")


@dataclass
class MessageStop:
    type: ClassVar[str] = "message_stop"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class Ping:
    type: ClassVar[str] = "ping"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorEvent:
    type: ClassVar[str] = "error"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class UnknownEvent:
    """Anything unrecognized, including non-JSON payloads. Forwarded verbatim."""

    type: ClassVar[str] = "unknown"
    message: SSEMessage = field(default_factory=SSEMessage)


StreamEvent = Union[
    MessageStart,
    ContentBlockStart,
    ContentBlockDelta,
    ContentBlockStop,
    MessageDelta,
    MessageStop,
    Ping,
    ErrorEvent,
    UnknownEvent,
]

_EVENT_TYPES: dict[str, type] = {
    cls.type: cls
    for cls in (
        MessageStart,
        ContentBlockStart,
        ContentBlockDelta,
        ContentBlockStop,
        MessageDelta,
        MessageStop,
        Ping,
        ErrorEvent,
    )
}


def parse_event(message: SSEMessage) -> StreamEvent:
    try:
        data = json.loads(message.data) if message.data else {}
    except json.JSONDecodeError:
        return UnknownEvent(message=message)
    if not isinstance(data, dict):
        return UnknownEvent(message=message)

    event_type = data.get("type") or message.event
    cls = _EVENT_TYPES.get(event_type)
    if cls is None:
        return UnknownEvent(message=message)
    return cls(data=data)


def encode_message(message: SSEMessage) -> bytes:
    lines = []
    if message.event is not None:
        lines.append(f"event: {message.event}")
    if message.id is not None:
        lines.append(f"id: {message.id}")
    if message.retry is not None:
        lines.append(f"retry: {message.retry}")
    for line in message.data.split("\n"):
        lines.append(f"data: {line}")
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def encode_event(event: StreamEvent) -> bytes:
    if isinstance(event, UnknownEvent):
        return encode_message(event.message)
    payload = json.dumps(event.data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event.type}\ndata: {payload}\n\n".encode()


async def iter_events(chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
    """Parse an async byte stream into typed events."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for message in decoder.feed(chunk):
            yield parse_event(message)
    for message in decoder.flush():
        yield parse_event(message)
