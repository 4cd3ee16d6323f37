"""Built-in routes used when no routes file exists.

Mirrors the legacy flat Router table: long-context, background, thinking,
web-search and an always-matching default route as the lowest priority.
"""

from __future__ import annotations

from ..config import RouterConfig
from .loader import legacy_route_dicts
from .manager import RouteManager
from .types import Route

DEFAULT_LONG_CONTEXT_THRESHOLD = 60000
DEFAULT_MODEL = "claude-3-5-sonnet-latest"


def create_default_routes(router: RouterConfig, manager: RouteManager) -> list[Route]:
    dicts = legacy_route_dicts(
        router,
        default_threshold=DEFAULT_LONG_CONTEXT_THRESHOLD,
        default_model=DEFAULT_MODEL,
        extra_tags=[],
        describe={
            "key": "originalRoute",
            "long_context": "longContext",
            "background": "background",
            "think": "think",
            "web_search": "webSearch",
            "default": "default",
        },
    )
    return [manager.create_route_from_config(d) for d in dicts]
