"""Streaming response handling: SSE codec, tool interception, usage capture."""

from .rewriter import (
    CONTINUATION_HEADER,
    PendingToolCall,
    StreamRewriter,
    StreamState,
    http_continuation,
)
from .sse import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    ErrorEvent,
    MessageDelta,
    MessageStart,
    MessageStop,
    Ping,
    SSEDecoder,
    SSEMessage,
    StreamEvent,
    UnknownEvent,
    encode_event,
    iter_events,
    parse_event,
)
from .usage import UsageObserver, record_response_usage

__all__ = [
    "CONTINUATION_HEADER",
    "ContentBlockDelta",
    "ContentBlockStart",
    "ContentBlockStop",
    "ErrorEvent",
    "MessageDelta",
    "MessageStart",
    "MessageStop",
    "PendingToolCall",
    "Ping",
    "SSEDecoder",
    "SSEMessage",
    "StreamEvent",
    "StreamRewriter",
    "StreamState",
    "UnknownEvent",
    "UsageObserver",
    "encode_event",
    "http_continuation",
    "iter_events",
    "parse_event",
    "record_response_usage",
]
