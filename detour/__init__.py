"""
Detour - a routing proxy for Claude Code.

Detour sits between an Anthropic-API client and one or more
Anthropic-compatible providers. For every request it:

- detects slash commands and enriches a per-request context (token
  count, session id, last usage)
- rewrites /compact requests and reroutes think requests
- picks a destination provider/model from priority-ordered routes and
  applies that route's transformations
- runs in-process agent tools called mid-stream and continues the
  conversation with their results

Quick Start:

    detour serve
    ANTHROPIC_BASE_URL=http://localhost:3456 claude

Programmatic routing:

    from detour import RouteManager, RouteContext, ProxyRequest

    manager = RouteManager()
    manager.register_route(manager.create_route_from_config({
        "id": "long-context",
        "priority": 90,
        "provider": "openrouter",
        "model": "google/gemini-2.5-pro",
        "matchers": [{"type": "token_count", "condition": {"threshold": 60000}}],
    }))
    result = manager.select_route(ProxyRequest(body=body), RouteContext(token_count=70000))
    print(result.provider_model)
"""

__version__ = "0.1.0"

from .config import ProviderConfig, ProxyConfig, RouterConfig, load_config
from .exceptions import (
    ConfigurationError,
    DetourError,
    ProviderError,
    RegistryError,
    RouteConfigError,
    StreamAbortedError,
    ToolLoopLimitError,
)
from .pipeline import PipelineResult, RequestPipeline
from .preprocessing import PreProcessor, PreProcessorManager, ProcessResult
from .routing import ProxyRequest, Route, RouteContext, RouteManager, RouteSelectionResult
from .session_cache import SessionUsageCache, Usage

__all__ = [
    "__version__",
    # Config
    "ProviderConfig",
    "ProxyConfig",
    "RouterConfig",
    "load_config",
    # Exceptions
    "ConfigurationError",
    "DetourError",
    "ProviderError",
    "RegistryError",
    "RouteConfigError",
    "StreamAbortedError",
    "ToolLoopLimitError",
    # Pipeline
    "PipelineResult",
    "PreProcessor",
    "PreProcessorManager",
    "ProcessResult",
    "RequestPipeline",
    # Routing
    "ProxyRequest",
    "Route",
    "RouteContext",
    "RouteManager",
    "RouteSelectionResult",
    # Session usage
    "SessionUsageCache",
    "Usage",
]
