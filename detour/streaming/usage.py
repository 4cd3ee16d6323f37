"""Record per-session token usage from responses."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from ..session_cache import SessionUsageCache, Usage
from .sse import MessageDelta, MessageStart, SSEDecoder, parse_event

logger = logging.getLogger(__name__)


class UsageObserver:
    """Watches a response stream and stores its usage under the session id.

    ``message_start`` carries the input side of the usage and
    ``message_delta`` the output side; they are merged before storing.
    The stream itself is passed through untouched.
    """

    def __init__(self, cache: SessionUsageCache, session_id: str | None):
        self.cache = cache
        self.session_id = session_id
        self._decoder = SSEDecoder()
        self._start_usage: dict[str, Any] = {}
        self.recorded: Usage | None = None

    async def observe(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            if self.session_id:
                self._feed(chunk)
            yield chunk
        if self.session_id:
            for message in self._decoder.flush():
                self._handle(parse_event(message))

    def _feed(self, chunk: bytes) -> None:
        for message in self._decoder.feed(chunk):
            self._handle(parse_event(message))

    def _handle(self, event) -> None:
        if isinstance(event, MessageStart):
            usage = event.message.get("usage")
            if isinstance(usage, dict):
                self._start_usage = dict(usage)
        elif isinstance(event, MessageDelta) and isinstance(event.usage, dict):
            self.record({**self._start_usage, **event.usage})

    def record(self, usage: dict[str, Any]) -> None:
        if not self.session_id:
            return
        self.recorded = Usage.from_dict(usage)
        self.cache.put(self.session_id, self.recorded)
        logger.debug("Stored usage for session %s: %s", self.session_id, usage)


def record_response_usage(
    cache: SessionUsageCache, session_id: str | None, payload: Any
) -> Usage | None:
    """Store ``payload["usage"]`` from a non-streamed response."""
    if not session_id or not isinstance(payload, dict):
        return None
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return None
    observer = UsageObserver(cache, session_id)
    observer.record(usage)
    return observer.recorded
