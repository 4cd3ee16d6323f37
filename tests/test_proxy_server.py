"""Tests for the Detour proxy server endpoints.

Upstream providers are replaced with an httpx.MockTransport, so these tests
exercise the full request path (pre-processing, routing, forwarding and
stream rewriting) without network access.
"""

import json

import pytest

pytest.importorskip("fastapi")

import httpx
from fastapi.testclient import TestClient

from detour.agents import Agent, AgentRegistry, Tool
from detour.config import ProviderConfig, ProxyConfig
from detour.proxy.server import create_app, messages_url
from detour.routing import RouteManager
from detour.streaming import StreamRewriter
from detour.tokens import EstimatingTokenCounter


def sse_bytes(*events):
    return b"".join(
        f"event: {e['type']}\ndata: {json.dumps(e)}\n\n".encode() for e in events
    )


def text_stream(text, usage_out=5):
    return sse_bytes(
        {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 11}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": usage_out}},
        {"type": "message_stop"},
    )


def tool_stream(name):
    return sse_bytes(
        {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 11}}},
        {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "tool_use", "id": "toolu_9", "name": name, "input": {}},
        },
        {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "input_json_delta", "partial_json": '{"q": "x"}'},
        },
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 3}},
        {"type": "message_stop"},
    )


class Upstream:
    """Records forwarded requests and answers like a provider would."""

    def __init__(self):
        self.requests = []
        self.stream_body = text_stream("hello from upstream")
        self.continuation_body = text_stream("after the tool")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "127.0.0.1":
            return httpx.Response(
                200,
                content=self.continuation_body,
                headers={"content-type": "text/event-stream"},
            )
        if request.url.path.endswith("/messages"):
            body = json.loads(request.content)
            if body.get("stream"):
                return httpx.Response(
                    200, content=self.stream_body, headers={"content-type": "text/event-stream"}
                )
            return httpx.Response(
                200,
                json={
                    "id": "msg_1",
                    "type": "message",
                    "role": "assistant",
                    "model": body["model"],
                    "content": [{"type": "text", "text": "hi"}],
                    "usage": {"input_tokens": 9, "output_tokens": 1},
                },
            )
        return httpx.Response(200, json={"path": request.url.path})

    def body(self, index=-1):
        return json.loads(self.requests[index].content)


class LookupAgent(Agent):
    name = "lookup"

    def __init__(self):
        super().__init__()
        self.calls = []

        async def lookup(args, context):
            self.calls.append(args)
            return "looked up"

        self.add_tool(Tool("lookup", "Look things up", {"type": "object"}, lookup))

    def should_handle(self, request, config):
        return "look it up" in json.dumps(request.body.get("messages"))


def build_routes():
    manager = RouteManager()
    for data in (
        {
            "id": "default",
            "priority": 100,
            "provider": "anthropic",
            "model": "claude-sonnet-4",
            "matchers": [{"type": "always"}],
        },
        {
            "id": "gemini",
            "priority": 500,
            "provider": "openrouter",
            "model": "google/gemini-2.5-pro",
            "matchers": [{"type": "model", "condition": {"models": ["gpt"], "matchMode": "prefix"}}],
        },
        {
            "id": "mystery",
            "priority": 600,
            "provider": "mystery",
            "model": "m1",
            "matchers": [{"type": "model", "condition": {"models": ["mystery"]}}],
        },
    ):
        manager.register_route(manager.create_route_from_config(data))
    return manager


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def agent():
    return LookupAgent()


@pytest.fixture
def config(tmp_path):
    return ProxyConfig(
        providers=[
            ProviderConfig(
                name="openrouter", api_base_url="https://openrouter.test/api/v1", api_key="or-key"
            )
        ],
        logs_dir=str(tmp_path / "logs"),
        api_key="proxy-key",
    )


@pytest.fixture
def client(config, upstream, agent):
    registry = AgentRegistry()
    registry.register(agent)
    app = create_app(
        config,
        route_manager=build_routes(),
        agents=registry,
        token_counter=EstimatingTokenCounter(),
        transport=httpx.MockTransport(upstream),
    )
    with TestClient(app) as test_client:
        yield test_client


def message_body(text="hello", **extra):
    body = {
        "model": "claude-3-5-haiku",
        "max_tokens": 100,
        "messages": [{"role": "user", "content": text}],
    }
    body.update(extra)
    return body


def test_messages_url():
    assert messages_url("https://api.anthropic.com") == "https://api.anthropic.com/v1/messages"
    assert messages_url("https://x.test/api/v1/") == "https://x.test/api/v1/messages"
    assert messages_url("https://x.test/v1/messages") == "https://x.test/v1/messages"


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["config"]["routes"] == 3
        assert data["config"]["providers"] == ["openrouter"]

    def test_stats(self, client):
        data = client.get("/stats").json()

        assert data["requests"]["total"] == 0
        assert data["routing"]["routes"] == 3
        assert "session_cache" in data

    def test_preprocessors(self, client):
        data = client.get("/api/preprocessors").json()

        names = [p["name"] for p in data["processors"]]
        assert names == ["command-detector", "context-enricher"]


class TestForwarding:
    def test_default_route_rewrites_model(self, client, upstream):
        response = client.post(
            "/v1/messages",
            json=message_body(),
            headers={"x-api-key": "client-key", "anthropic-version": "2023-06-01"},
        )

        assert response.status_code == 200
        assert response.json()["model"] == "claude-sonnet-4"
        forwarded = upstream.requests[-1]
        assert str(forwarded.url) == "https://api.anthropic.com/v1/messages"
        assert forwarded.headers["x-api-key"] == "client-key"
        assert forwarded.headers["anthropic-version"] == "2023-06-01"

    def test_configured_provider_gets_its_key(self, client, upstream):
        response = client.post(
            "/v1/messages",
            json=message_body(model="gpt-4o"),
            headers={"authorization": "Bearer client-token"},
        )

        assert response.status_code == 200
        forwarded = upstream.requests[-1]
        assert str(forwarded.url) == "https://openrouter.test/api/v1/messages"
        assert forwarded.headers["x-api-key"] == "or-key"
        assert "authorization" not in forwarded.headers
        assert upstream.body()["model"] == "google/gemini-2.5-pro"

    def test_unknown_provider(self, client, upstream):
        response = client.post("/v1/messages", json=message_body(model="mystery"))

        assert response.status_code == 400
        assert "Unknown provider" in response.json()["detail"]
        assert upstream.requests == []

    def test_invalid_body(self, client):
        response = client.post(
            "/v1/messages", content=b"not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400

    def test_non_streamed_usage_recorded(self, client):
        client.post("/v1/messages", json=message_body(), headers={"x-session-id": "sess-1"})

        usage = client.app.state.proxy.session_cache.get("sess-1")
        assert usage.input_tokens == 9
        assert usage.output_tokens == 1

    def test_streamed_response_forwarded(self, client):
        response = client.post(
            "/v1/messages", json=message_body(stream=True), headers={"x-session-id": "sess-2"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "hello from upstream" in response.text
        usage = client.app.state.proxy.session_cache.get("sess-2")
        assert (usage.input_tokens, usage.output_tokens) == (11, 5)

    def test_passthrough(self, client, upstream):
        response = client.get("/v1/models?limit=1")

        assert response.json() == {"path": "/v1/models"}
        assert str(upstream.requests[-1].url) == "https://api.anthropic.com/v1/models?limit=1"


class TestAgents:
    def test_agent_tool_call_is_handled_locally(self, client, upstream, agent):
        upstream.stream_body = tool_stream("lookup")

        response = client.post(
            "/v1/messages",
            json=message_body("please look it up", stream=True),
            headers={"x-api-key": "client-key"},
        )

        assert response.status_code == 200
        assert "after the tool" in response.text
        assert "toolu_9" not in response.text
        assert agent.calls == [{"q": "x"}]

        first = upstream.body(0)
        assert first["tools"][0]["name"] == "lookup"

        continuation = upstream.requests[1]
        assert str(continuation.url) == "http://127.0.0.1:3456/v1/messages"
        assert continuation.headers["x-detour-continuation"] == "1"
        assert continuation.headers["x-api-key"] == "client-key"
        messages = json.loads(continuation.content)["messages"]
        assert messages[-1]["content"][0] == {
            "type": "tool_result",
            "tool_use_id": "toolu_9",
            "content": "looked up",
        }
        assert client.app.state.proxy.metrics.tool_calls == 1

    def test_rewriter_watches_for_client_disconnect(self, client, upstream, monkeypatch):
        disconnect_checks = []

        class RecordingRewriter(StreamRewriter):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                disconnect_checks.append(self.is_disconnected)

        monkeypatch.setattr("detour.proxy.server.StreamRewriter", RecordingRewriter)
        upstream.stream_body = tool_stream("lookup")

        response = client.post("/v1/messages", json=message_body("please look it up", stream=True))

        assert response.status_code == 200
        assert "after the tool" in response.text
        assert len(disconnect_checks) == 1
        assert disconnect_checks[0] is not None

    def test_inactive_agent_leaves_tools_alone(self, client, upstream):
        client.post("/v1/messages", json=message_body("hello"))

        assert "tools" not in upstream.body()


class TestBlocking:
    def test_blocked_command_never_reaches_upstream(self, tmp_path, upstream):
        config = ProxyConfig(block_commands=["/compact"], logs_dir=str(tmp_path))
        app = create_app(
            config,
            route_manager=build_routes(),
            agents=AgentRegistry(),
            token_counter=EstimatingTokenCounter(),
            transport=httpx.MockTransport(upstream),
        )

        with TestClient(app) as client:
            response = client.post("/v1/messages", json=message_body("/compact"))

        assert response.status_code == 200
        data = response.json()
        assert data["model"] == "detour-interceptor"
        assert "/compact" in data["content"][0]["text"]
        assert upstream.requests == []
        assert app.state.proxy.metrics.requests_blocked == 1


class TestRouteAdmin:
    def test_list_routes(self, client):
        data = client.get("/api/routes").json()

        assert [r["id"] for r in data["routes"]] == ["mystery", "gemini", "default"]
        assert data["stats"]["routes"] == 3

    def test_create_get_update_delete(self, client):
        new_route = {
            "id": "haiku",
            "priority": 300,
            "provider": "anthropic",
            "model": "claude-3-5-haiku",
            "matchers": [{"type": "model", "condition": {"models": ["claude-3-5-haiku"]}}],
        }

        created = client.post("/api/routes", json=new_route)
        assert created.status_code == 201
        assert created.json()["matchers"] == [
            {"type": "model", "condition": {"models": ["claude-3-5-haiku"]}}
        ]

        assert client.get("/api/routes/haiku").json()["priority"] == 300

        toggled = client.put("/api/routes/haiku", json={"enabled": False})
        assert toggled.json()["enabled"] is False

        replaced = client.put(
            "/api/routes/haiku", json={**new_route, "id": "ignored", "priority": 10}
        )
        assert replaced.json()["id"] == "haiku"
        assert replaced.json()["priority"] == 10

        assert client.delete("/api/routes/haiku").json() == {"deleted": "haiku"}
        assert client.get("/api/routes/haiku").status_code == 404

    def test_invalid_route_rejected(self, client):
        response = client.post("/api/routes", json={"id": "broken"})

        assert response.status_code == 400

    def test_missing_route(self, client):
        assert client.put("/api/routes/ghost", json={"enabled": True}).status_code == 404
        assert client.delete("/api/routes/ghost").status_code == 404

    def test_save_routes(self, client, config, tmp_path):
        config.routes_path = str(tmp_path / "saved.json")

        response = client.post("/api/routes/save")

        assert response.json()["routes"] == 3
        saved = json.loads((tmp_path / "saved.json").read_text())
        assert len(saved["routes"]) == 3
