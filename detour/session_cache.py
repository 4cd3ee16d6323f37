"""Per-session token usage cache.

Stores the most recent usage report seen for each session id so the
next request from the same session can route on it. Reads happen in the
context enricher; writes come from the response observer on every
upstream response.

Entries expire after a TTL and the cache is bounded in size with LRU
eviction, so long-running proxies do not accumulate sessions forever.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class Usage:
    """Token usage snapshot reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Usage:
        return cls(
            input_tokens=int(data.get("input_tokens") or 0),
            output_tokens=int(data.get("output_tokens") or 0),
            cache_creation_input_tokens=data.get("cache_creation_input_tokens"),
            cache_read_input_tokens=data.get("cache_read_input_tokens"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class _Entry:
    usage: Usage
    stored_at: float = field(default_factory=time.time)


class SessionUsageCache:
    """Thread-safe TTL + LRU map of session id to last Usage."""

    def __init__(self, max_entries: int = 1000, ttl_seconds: float = 3600):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, session_id: str) -> Usage | None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                self._misses += 1
                return None
            if time.time() - entry.stored_at > self.ttl_seconds:
                del self._entries[session_id]
                self._misses += 1
                return None
            self._entries.move_to_end(session_id)
            self._hits += 1
            return entry.usage

    def put(self, session_id: str, usage: Usage | dict[str, Any]) -> None:
        if isinstance(usage, dict):
            usage = Usage.from_dict(usage)
        with self._lock:
            self._entries[session_id] = _Entry(usage=usage)
            self._entries.move_to_end(session_id)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
