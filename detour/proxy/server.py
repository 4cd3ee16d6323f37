"""Detour proxy server.

Sits between an Anthropic-API client (Claude Code) and one or more
Anthropic-compatible providers. Every /v1/messages request runs through
the pre-processing pipeline and route selection before it is forwarded;
streamed responses are watched for usage and for calls to in-process
agent tools.

Usage:
    detour serve --port 3456

    # With Claude Code:
    ANTHROPIC_BASE_URL=http://localhost:3456 claude
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .. import __version__
from ..agents import AgentRegistry, default_agent_registry
from ..config import ProxyConfig
from ..exceptions import ProviderError, RouteConfigError
from ..pipeline import PipelineResult, RequestPipeline
from ..preprocessing import PreProcessorManager, register_builtin_preprocessors
from ..routing import (
    RouteManager,
    build_routes,
    create_default_routes,
    export_routes_from_manager,
    load_routes_into_manager,
    migrate_from_legacy_config,
    split_destination,
)
from ..routing.types import ProxyRequest
from ..session_cache import SessionUsageCache
from ..streaming import (
    CONTINUATION_HEADER,
    StreamRewriter,
    UsageObserver,
    http_continuation,
    record_response_usage,
)
from ..tokens import TiktokenCounter, TokenCounter

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("detour.proxy")

# Inbound headers that must not be forwarded as-is
_DROP_REQUEST_HEADERS = {"host", "content-length", "accept-encoding", CONTINUATION_HEADER}

# httpx hands us decoded bodies, so framing headers from upstream no longer apply
_DROP_RESPONSE_HEADERS = {"content-encoding", "content-length", "transfer-encoding", "connection"}

# Caller credentials and API versioning carried onto continuation requests
_CONTINUATION_HEADERS = ("x-api-key", "authorization", "anthropic-version", "anthropic-beta")


def messages_url(base_url: str) -> str:
    """Messages endpoint for a provider base URL."""
    base = base_url.rstrip("/")
    if base.endswith("/messages"):
        return base
    if base.endswith("/v1"):
        return f"{base}/messages"
    return f"{base}/v1/messages"


def _response_headers(response: httpx.Response) -> dict[str, str]:
    return {k: v for k, v in response.headers.items() if k.lower() not in _DROP_RESPONSE_HEADERS}


@dataclass
class Destination:
    provider: str
    model: str
    url: str
    api_key: str | None = None


@dataclass
class ProxyMetrics:
    requests_total: int = 0
    requests_blocked: int = 0
    requests_failed: int = 0
    requests_streamed: int = 0
    continuations: int = 0
    tool_calls: int = 0
    tool_failures: int = 0
    by_destination: Counter = field(default_factory=Counter)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": {
                "total": self.requests_total,
                "blocked": self.requests_blocked,
                "failed": self.requests_failed,
                "streamed": self.requests_streamed,
                "continuations": self.continuations,
            },
            "tools": {"calls": self.tool_calls, "failures": self.tool_failures},
            "destinations": dict(self.by_destination),
        }


class DetourProxy:
    """Routing proxy for Anthropic-compatible providers."""

    def __init__(
        self,
        config: ProxyConfig,
        route_manager: RouteManager | None = None,
        agents: AgentRegistry | None = None,
        token_counter: TokenCounter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.transport = transport

        self.session_cache = SessionUsageCache(
            max_entries=config.session_cache_max_entries,
            ttl_seconds=config.session_cache_ttl_seconds,
        )
        self.token_counter = token_counter or TiktokenCounter()

        self.preprocessors = PreProcessorManager()
        register_builtin_preprocessors(
            self.preprocessors,
            config,
            session_cache=self.session_cache,
            token_counter=self.token_counter,
        )

        self.route_manager = route_manager if route_manager is not None else RouteManager()
        if route_manager is None:
            self._load_routes()

        self.agents = agents if agents is not None else default_agent_registry()
        self.pipeline = RequestPipeline(
            self.preprocessors, self.route_manager, agents=self.agents, config=config
        )

        self.metrics = ProxyMetrics()

        # HTTP client
        self.http_client: httpx.AsyncClient | None = None

        # Request counter for IDs
        self._request_counter = 0

    def _load_routes(self) -> None:
        """Populate the route manager from the routes file or the Router config."""
        try:
            if load_routes_into_manager(self.route_manager, self.config.routes_path):
                return
        except RouteConfigError as e:
            logger.info("No routes file loaded (%s)", e.message)

        router = self.config.router
        if router.default:
            routes = build_routes(self.route_manager, migrate_from_legacy_config(router))
            logger.info("Built %d routes from legacy Router config", len(routes))
        else:
            routes = create_default_routes(router, self.route_manager)
            logger.info("Using %d default routes", len(routes))
        self.route_manager.register_routes(routes)

    async def startup(self):
        """Initialize async resources."""
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=self.config.connect_timeout_seconds,
                read=self.config.request_timeout_seconds,
                write=self.config.request_timeout_seconds,
                pool=self.config.connect_timeout_seconds,
            ),
            transport=self.transport,
        )
        logger.info("Detour proxy started")
        logger.info("Routes: %d", len(self.route_manager))
        logger.info("Pre-processors: %s", ", ".join(p.name for p in self.preprocessors.ordered()))
        logger.info("Agents: %s", "ENABLED" if self.config.agents_enabled else "DISABLED")

    async def shutdown(self):
        """Cleanup async resources."""
        if self.http_client:
            await self.http_client.aclose()
        self._print_summary()

    def _print_summary(self):
        m = self.metrics
        logger.info("=" * 60)
        logger.info("DETOUR PROXY SESSION SUMMARY")
        logger.info("=" * 60)
        logger.info("Total requests:    %d", m.requests_total)
        logger.info("Blocked:           %d", m.requests_blocked)
        logger.info("Failed:            %d", m.requests_failed)
        logger.info("Streamed:          %d", m.requests_streamed)
        logger.info("Tool calls:        %d", m.tool_calls)
        for destination, count in m.by_destination.most_common():
            logger.info("  %-40s %d", destination, count)
        logger.info("=" * 60)

    def _next_request_id(self) -> str:
        """Generate unique request ID."""
        self._request_counter += 1
        return f"dt_{int(time.time())}_{self._request_counter:06d}"

    def resolve_destination(self, provider_model: str) -> Destination:
        """Map ``"provider,model"`` to an upstream URL and native model id.

        A bare model, or the ``anthropic`` provider when it is not configured
        explicitly, goes to ``default_upstream_url``.

        Raises:
            ProviderError: If the provider is not configured.
        """
        provider_name, model = split_destination(provider_model)
        provider = self.config.get_provider(provider_name)
        if provider is not None:
            return Destination(
                provider=provider_name,
                model=model,
                url=messages_url(provider.api_base_url),
                api_key=provider.api_key,
            )
        if provider_name == "anthropic":
            return Destination(
                provider=provider_name,
                model=model,
                url=messages_url(self.config.default_upstream_url),
            )
        raise ProviderError(
            f"Unknown provider: {provider_name}",
            details={"provider_model": provider_model},
        )

    def _upstream_headers(self, headers: dict[str, str], destination: Destination) -> dict:
        upstream = {k: v for k, v in headers.items() if k not in _DROP_REQUEST_HEADERS}
        if destination.api_key:
            upstream.pop("authorization", None)
            upstream["x-api-key"] = destination.api_key
        return upstream

    def _continuation_headers(self, headers: dict[str, str]) -> dict[str, str]:
        carried = {k: headers[k] for k in _CONTINUATION_HEADERS if k in headers}
        if self.config.api_key and "x-api-key" not in carried:
            carried["x-api-key"] = self.config.api_key
        return carried

    async def handle_messages(self, request: Request) -> Response:
        """Handle Anthropic /v1/messages endpoint."""
        request_id = self._next_request_id()

        try:
            body = await request.json()
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=400, detail="Request body must be JSON") from e
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")

        headers = dict(request.headers.items())
        headers.pop("host", None)
        headers.pop("content-length", None)

        self.metrics.requests_total += 1
        proxy_request = ProxyRequest(body=body, headers=headers)
        result = await self.pipeline.process(proxy_request)
        if result.continuation:
            self.metrics.continuations += 1

        if result.blocked:
            self.metrics.requests_blocked += 1
            logger.info(
                "[%s] Blocked by %s", request_id, result.preprocessing.block_processor
            )
            return JSONResponse(content=result.block_response)

        try:
            destination = self.resolve_destination(result.provider_model or "")
        except ProviderError as e:
            self.metrics.requests_failed += 1
            logger.error("[%s] %s", request_id, e)
            raise HTTPException(status_code=400, detail=str(e)) from e

        body["model"] = destination.model
        self.metrics.by_destination[result.provider_model] += 1
        upstream_headers = self._upstream_headers(headers, destination)
        logger.info(
            "[%s] %s -> %s (%d tokens)",
            request_id,
            result.selection.route.id if result.selection and result.selection.route else "override",
            result.provider_model,
            result.context.token_count,
        )

        if body.get("stream"):
            return await self._stream_response(
                request_id,
                proxy_request,
                result,
                destination,
                upstream_headers,
                is_disconnected=request.is_disconnected,
            )

        try:
            response = await self.http_client.post(
                destination.url, json=body, headers=upstream_headers
            )
        except httpx.HTTPError as e:
            self.metrics.requests_failed += 1
            logger.error("[%s] Request failed: %s", request_id, e)
            raise HTTPException(status_code=502, detail=str(e)) from e

        if response.is_success:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            record_response_usage(self.session_cache, result.context.session_id, payload)

        return Response(
            content=response.content,
            status_code=response.status_code,
            headers=_response_headers(response),
        )

    async def _stream_response(
        self,
        request_id: str,
        proxy_request: ProxyRequest,
        result: PipelineResult,
        destination: Destination,
        headers: dict[str, str],
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> Response:
        """Stream the upstream response, watching usage and agent tool calls."""
        upstream = self.http_client.build_request(
            "POST", destination.url, json=proxy_request.body, headers=headers
        )
        try:
            response = await self.http_client.send(upstream, stream=True)
        except httpx.HTTPError as e:
            self.metrics.requests_failed += 1
            logger.error("[%s] Request failed: %s", request_id, e)
            raise HTTPException(status_code=502, detail=str(e)) from e

        if not response.is_success:
            content = await response.aread()
            await response.aclose()
            return Response(
                content=content,
                status_code=response.status_code,
                headers=_response_headers(response),
            )

        self.metrics.requests_streamed += 1
        abort = asyncio.Event()
        observer = UsageObserver(self.session_cache, result.context.session_id)
        chunks = observer.observe(response.aiter_bytes())

        rewriter: StreamRewriter | None = None
        if result.agents:
            rewriter = StreamRewriter(
                agents=result.agents,
                request=proxy_request,
                continuation=http_continuation(
                    self.http_client,
                    self.config.local_messages_url,
                    headers=self._continuation_headers(proxy_request.headers),
                ),
                config=self.config,
                max_rounds=self.config.max_tool_rounds,
                abort=abort,
                is_disconnected=is_disconnected,
            )
            chunks = rewriter.rewrite(chunks)

        async def generate():
            try:
                async for chunk in chunks:
                    yield chunk
            finally:
                abort.set()
                await response.aclose()
                if rewriter is not None:
                    self.metrics.tool_calls += rewriter.stats.tool_calls
                    self.metrics.tool_failures += rewriter.stats.tool_failures
                    if rewriter.stats.rounds:
                        logger.info(
                            "[%s] %d tool continuation round(s)",
                            request_id,
                            rewriter.stats.rounds,
                        )

        return StreamingResponse(generate(), media_type="text/event-stream")

    async def handle_passthrough(self, request: Request, base_url: str) -> Response:
        """Pass through request unchanged."""
        path = request.url.path
        url = f"{base_url.rstrip('/')}{path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"

        headers = dict(request.headers.items())
        headers.pop("host", None)
        headers.pop("content-length", None)

        body = await request.body()

        try:
            response = await self.http_client.request(
                method=request.method,
                url=url,
                headers=headers,
                content=body,
            )
        except httpx.HTTPError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

        return Response(
            content=response.content,
            status_code=response.status_code,
            headers=_response_headers(response),
        )

    def stats(self) -> dict[str, Any]:
        return {
            **self.metrics.to_dict(),
            "routing": self.route_manager.stats(),
            "preprocessors": self.preprocessors.stats(),
            "session_cache": self.session_cache.stats(),
        }


# =============================================================================
# FastAPI App
# =============================================================================


def create_app(
    config: ProxyConfig | None = None,
    *,
    route_manager: RouteManager | None = None,
    agents: AgentRegistry | None = None,
    token_counter: TokenCounter | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create FastAPI application."""
    config = config or ProxyConfig()

    app = FastAPI(
        title="Detour",
        description="Routing proxy for Claude Code",
        version=__version__,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    proxy = DetourProxy(
        config,
        route_manager=route_manager,
        agents=agents,
        token_counter=token_counter,
        transport=transport,
    )
    app.state.proxy = proxy

    @app.on_event("startup")
    async def startup():
        await proxy.startup()

    @app.on_event("shutdown")
    async def shutdown():
        await proxy.shutdown()

    # Health & stats
    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": __version__,
            "config": {
                "routes": len(proxy.route_manager),
                "providers": [p.name for p in config.providers],
                "agents": config.agents_enabled,
            },
        }

    @app.get("/stats")
    async def stats():
        return proxy.stats()

    # Anthropic endpoint
    @app.post("/v1/messages")
    async def messages(request: Request):
        return await proxy.handle_messages(request)

    # Route administration
    @app.get("/api/routes")
    async def list_routes():
        return {
            "routes": [r.to_dict() for r in proxy.route_manager.get_all_routes()],
            "stats": proxy.route_manager.stats(),
        }

    @app.post("/api/routes", status_code=201)
    async def create_route(request: Request):
        data = await request.json()
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Route body must be a JSON object")
        try:
            route = proxy.route_manager.create_route_from_config(data)
        except RouteConfigError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        proxy.route_manager.register_route(route)
        return route.to_dict()

    @app.post("/api/routes/save")
    async def save_routes():
        try:
            path = export_routes_from_manager(proxy.route_manager, config.routes_path)
        except RouteConfigError as e:
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"saved": str(path), "routes": len(proxy.route_manager)}

    @app.get("/api/routes/{route_id}")
    async def get_route(route_id: str):
        route = proxy.route_manager.get_route(route_id)
        if route is None:
            raise HTTPException(status_code=404, detail=f"Route not found: {route_id}")
        return route.to_dict()

    @app.put("/api/routes/{route_id}")
    async def update_route(route_id: str, request: Request):
        data = await request.json()
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Route body must be a JSON object")

        # {"enabled": bool} toggles an existing route; anything else replaces it
        if set(data) == {"enabled"}:
            if not proxy.route_manager.set_route_enabled(route_id, bool(data["enabled"])):
                raise HTTPException(status_code=404, detail=f"Route not found: {route_id}")
            return proxy.route_manager.get_route(route_id).to_dict()

        try:
            route = proxy.route_manager.create_route_from_config({**data, "id": route_id})
        except RouteConfigError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        proxy.route_manager.register_route(route)
        return route.to_dict()

    @app.delete("/api/routes/{route_id}")
    async def delete_route(route_id: str):
        if not proxy.route_manager.unregister_route(route_id):
            raise HTTPException(status_code=404, detail=f"Route not found: {route_id}")
        return {"deleted": route_id}

    @app.get("/api/preprocessors")
    async def list_preprocessors():
        return proxy.preprocessors.stats()

    # Passthrough
    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
    async def passthrough(request: Request, path: str):
        return await proxy.handle_passthrough(request, config.default_upstream_url)

    return app


def run_server(config: ProxyConfig | None = None):
    """Run the proxy server."""
    config = config or ProxyConfig()
    app = create_app(config)

    logger.info("Detour %s listening on http://%s:%d", __version__, config.host, config.port)
    logger.info("Claude Code: ANTHROPIC_BASE_URL=http://%s:%d claude", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level="warning")
