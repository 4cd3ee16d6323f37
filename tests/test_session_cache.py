"""Tests for the session usage cache and response usage capture."""

import time

import pytest

from detour.session_cache import SessionUsageCache, Usage
from detour.streaming import UsageObserver, record_response_usage


class TestSessionUsageCache:
    def test_put_and_get(self):
        cache = SessionUsageCache()

        cache.put("s1", {"input_tokens": 10, "output_tokens": 2})

        usage = cache.get("s1")
        assert usage == Usage(input_tokens=10, output_tokens=2)
        assert cache.stats()["hits"] == 1

    def test_miss(self):
        cache = SessionUsageCache()

        assert cache.get("nope") is None
        assert cache.stats()["misses"] == 1

    def test_ttl_expiry(self):
        cache = SessionUsageCache(ttl_seconds=10)
        cache.put("s1", Usage(input_tokens=1))
        cache._entries["s1"].stored_at = time.time() - 11

        assert cache.get("s1") is None
        assert len(cache) == 0

    def test_lru_eviction(self):
        cache = SessionUsageCache(max_entries=2)
        cache.put("a", Usage(input_tokens=1))
        cache.put("b", Usage(input_tokens=2))
        cache.get("a")  # b is now least recently used

        cache.put("c", Usage(input_tokens=3))

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get("c") is not None
        assert cache.stats()["evictions"] == 1

    def test_usage_to_dict_omits_missing_cache_fields(self):
        usage = Usage.from_dict({"input_tokens": 5, "cache_read_input_tokens": 3})

        assert usage.to_dict() == {
            "input_tokens": 5,
            "output_tokens": 0,
            "cache_read_input_tokens": 3,
        }


class TestUsageObserver:
    @pytest.mark.asyncio
    async def test_merges_start_and_delta_usage(self, sse, aiter_chunks):
        cache = SessionUsageCache()
        observer = UsageObserver(cache, "s1")
        raw = [
            sse("message_start", message={"usage": {"input_tokens": 100, "output_tokens": 1}}),
            sse("content_block_delta", index=0, delta={"type": "text_delta", "text": "hi"}),
            sse("message_delta", delta={"stop_reason": "end_turn"}, usage={"output_tokens": 42}),
        ]
        joined = b"".join(raw)
        chunks = [joined[:25], joined[25:90], joined[90:]]

        forwarded = [chunk async for chunk in observer.observe(aiter_chunks(chunks))]

        assert forwarded == chunks
        assert cache.get("s1") == Usage(input_tokens=100, output_tokens=42)
        assert observer.recorded == Usage(input_tokens=100, output_tokens=42)

    @pytest.mark.asyncio
    async def test_without_session_nothing_is_stored(self, sse, aiter_chunks):
        cache = SessionUsageCache()
        observer = UsageObserver(cache, None)
        chunks = [sse("message_delta", usage={"output_tokens": 1})]

        forwarded = [chunk async for chunk in observer.observe(aiter_chunks(chunks))]

        assert forwarded == chunks
        assert len(cache) == 0

    def test_non_streamed_response(self):
        cache = SessionUsageCache()

        usage = record_response_usage(
            cache, "s1", {"type": "message", "usage": {"input_tokens": 7, "output_tokens": 3}}
        )

        assert usage == Usage(input_tokens=7, output_tokens=3)
        assert cache.get("s1") == usage
        assert record_response_usage(cache, "s1", {"type": "message"}) is None
        assert record_response_usage(cache, None, {"usage": {}}) is None
