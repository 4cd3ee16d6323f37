"""Shared pytest fixtures for Detour tests."""

import json

import pytest

from detour.config import ProxyConfig, RouterConfig
from detour.routing.types import ProxyRequest, RouteContext
from detour.tokens import EstimatingTokenCounter


@pytest.fixture
def counter():
    """Deterministic token counter that needs no encoding download."""
    return EstimatingTokenCounter()


@pytest.fixture
def router_config():
    """Router table with compact and ultrathink destinations."""
    return RouterConfig(
        default="anthropic,claude-sonnet-4",
        compact="openrouter,google/gemini-2.5-pro",
        ultrathink="anthropic,claude-opus-4",
    )


@pytest.fixture
def proxy_config(tmp_path, router_config):
    """Proxy config that writes its logs under tmp_path."""
    return ProxyConfig(router=router_config, logs_dir=str(tmp_path / "logs"))


@pytest.fixture
def make_request():
    """Build a ProxyRequest whose last user message is ``text``."""

    def _make(text="hello", *, headers=None, history=None, **body):
        messages = list(history or [])
        messages.append({"role": "user", "content": text})
        payload = {"model": "claude-sonnet-4", "max_tokens": 1024, "messages": messages}
        payload.update(body)
        return ProxyRequest(body=payload, headers=headers or {})

    return _make


@pytest.fixture
def context():
    return RouteContext()


@pytest.fixture
def sse():
    """Encode one Anthropic SSE event as bytes."""

    def _encode(event_type, **data):
        payload = {"type": event_type, **data}
        return f"event: {event_type}\ndata: {json.dumps(payload)}\n\n".encode()

    return _encode


@pytest.fixture
def aiter_chunks():
    """Turn a list of byte chunks into an async iterator."""

    def _make(chunks):
        async def _gen():
            for chunk in chunks:
                yield chunk

        return _gen()

    return _make
