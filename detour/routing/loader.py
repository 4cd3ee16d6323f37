"""Routes file loading, saving and legacy migration.

A routes file is a JSON document:

    {
      "version": "1.0.0",
      "description": "...",
      "routes": [{"id": ..., "priority": ..., "matchers": [...], ...}],
      "fallbackChains": {...}
    }

Matcher and transformation ``type`` strings are resolved through the
RouteManager's registries when routes are loaded into it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import HOME_DIR, RouterConfig
from ..exceptions import RouteConfigError
from .manager import RouteManager

logger = logging.getLogger(__name__)

DEFAULT_ROUTES_PATH = HOME_DIR / "routes.json"
ROUTES_FILE_VERSION = "1.0.0"


@dataclass
class RoutesConfig:
    """Parsed routes file. ``routes`` holds raw route dicts."""

    version: str = ROUTES_FILE_VERSION
    routes: list[dict[str, Any]] = field(default_factory=list)
    description: str | None = None
    fallback_chains: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RoutesConfig:
        if not isinstance(data, dict) or not isinstance(data.get("routes"), list):
            raise RouteConfigError("Invalid routes config: 'routes' array is required")
        return cls(
            version=str(data.get("version", ROUTES_FILE_VERSION)),
            routes=list(data["routes"]),
            description=data.get("description"),
            fallback_chains=data.get("fallbackChains"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"version": self.version}
        if self.description:
            data["description"] = self.description
        data["routes"] = self.routes
        if self.fallback_chains:
            data["fallbackChains"] = self.fallback_chains
        return data


def candidate_paths(custom_path: str | Path | None = None) -> list[Path]:
    paths = []
    if custom_path:
        paths.append(Path(custom_path).expanduser())
    paths.append(DEFAULT_ROUTES_PATH)
    paths.append(Path.cwd() / "routes.json")
    return paths


def find_routes_file(custom_path: str | Path | None = None) -> Path:
    """Locate the routes file.

    Checks the custom path, then ~/.claude-code-router/routes.json, then
    ./routes.json.

    Raises:
        RouteConfigError: If none of the locations exist
    """
    checked = candidate_paths(custom_path)
    for path in checked:
        if path.is_file():
            return path
    raise RouteConfigError(
        "No routes configuration found. Create a routes.json in one of the checked locations",
        details={"checked": [str(p) for p in checked]},
    )


def load_routes_config(custom_path: str | Path | None = None) -> RoutesConfig:
    path = find_routes_file(custom_path)
    logger.info("Loading routes from: %s", path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RouteConfigError(
            "Failed to load routes config", details={"path": str(path), "error": e}
        ) from e

    config = RoutesConfig.from_dict(data)
    logger.info("Loaded %d routes from %s", len(config.routes), path)
    return config


def save_routes_config(config: RoutesConfig, path: str | Path | None = None) -> Path:
    target = Path(path).expanduser() if path else DEFAULT_ROUTES_PATH
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    except OSError as e:
        raise RouteConfigError(
            "Failed to save routes config", details={"path": str(target), "error": e}
        ) from e
    logger.info("Saved routes configuration to %s", target)
    return target


def build_routes(manager: RouteManager, config: RoutesConfig) -> list:
    """Create Route objects for every buildable entry in ``config``."""
    routes = []
    for data in config.routes:
        try:
            routes.append(manager.create_route_from_config(data))
        except RouteConfigError as e:
            label = data.get("id") if isinstance(data, dict) else None
            logger.error("Failed to create route %s: %s", label or "<no id>", e)
    return routes


def load_routes_into_manager(manager: RouteManager, custom_path: str | Path | None = None) -> int:
    """Load a routes file and register its routes. Returns the number registered."""
    routes = build_routes(manager, load_routes_config(custom_path))
    manager.register_routes(routes)
    logger.info("Registered %d routes with RouteManager", len(routes))
    return len(routes)


def export_routes_from_manager(manager: RouteManager, path: str | Path | None = None) -> Path:
    routes = manager.get_all_routes()
    config = RoutesConfig(
        version=ROUTES_FILE_VERSION,
        description="Exported routes from RouteManager",
        routes=[route.to_dict() for route in routes],
    )
    return save_routes_config(config, path)


def split_destination(destination: str) -> tuple[str, str]:
    """Split ``"provider,model"``. A bare model is assumed to be Anthropic."""
    if "," in destination:
        provider, model = destination.split(",", 1)
        return provider.strip(), model.strip()
    return "anthropic", destination.strip()


def _route(
    route_id: str,
    priority: int,
    description: str,
    tags: list[str],
    destination: str,
    matcher: dict[str, Any],
    metadata: dict[str, Any],
) -> dict[str, Any]:
    provider, model = split_destination(destination)
    return {
        "id": route_id,
        "priority": priority,
        "description": description,
        "tags": tags,
        "enabled": True,
        "matchers": [matcher],
        "provider": provider,
        "model": model,
        "transformations": [],
        "metadata": metadata,
    }


def legacy_route_dicts(
    router: RouterConfig,
    *,
    default_threshold: int,
    default_model: str | None,
    extra_tags: list[str],
    describe: dict[str, str],
) -> list[dict[str, Any]]:
    """Translate the flat Router table into route dicts, highest priority first."""
    routes = []
    if router.long_context:
        routes.append(
            _route(
                "long-context",
                800,
                "Route to long context model when token count exceeds threshold",
                ["long-context", *extra_tags],
                router.long_context,
                {
                    "type": "token_count",
                    "description": "High token count",
                    "condition": {
                        "threshold": router.long_context_threshold or default_threshold,
                        "operator": "gt",
                    },
                },
                {describe["key"]: describe["long_context"]},
            )
        )
    if router.background:
        routes.append(
            _route(
                "background-haiku",
                700,
                "Route claude-3-5-haiku requests to background model",
                ["background", *extra_tags],
                router.background,
                {
                    "type": "model",
                    "description": "Haiku model",
                    "condition": {"models": ["claude-3-5-haiku"], "matchMode": "prefix"},
                },
                {describe["key"]: describe["background"]},
            )
        )
    if router.think:
        routes.append(
            _route(
                "thinking",
                600,
                "Route to thinking model when reasoning is requested",
                ["thinking", *extra_tags],
                router.think,
                {"type": "thinking", "description": "Thinking enabled", "condition": {}},
                {describe["key"]: describe["think"]},
            )
        )
    if router.web_search:
        routes.append(
            _route(
                "web-search",
                500,
                "Route to web search model when web_search tools are present",
                ["web-search", *extra_tags],
                router.web_search,
                {
                    "type": "tool",
                    "description": "Web search tools",
                    "condition": {"toolTypes": ["web_search"], "matchMode": "any"},
                },
                {describe["key"]: describe["web_search"]},
            )
        )
    default = router.default or default_model
    if default:
        routes.append(
            _route(
                "default",
                100,
                "Default fallback route for all requests",
                ["default", "fallback", *extra_tags],
                default,
                {"type": "always", "description": "Always matches", "condition": {}},
                {describe["key"]: describe["default"]},
            )
        )
    return routes


def migrate_from_legacy_config(router: RouterConfig | dict[str, Any]) -> RoutesConfig:
    """Convert a legacy flat ``Router`` section into a routes file.

    Accepts a RouterConfig, a raw ``Router`` dict, or a whole legacy config
    dict containing a ``Router`` key.
    """
    if isinstance(router, dict):
        router = RouterConfig.from_dict(router.get("Router", router))

    routes = legacy_route_dicts(
        router,
        default_threshold=120000,
        default_model=None,
        extra_tags=["migrated"],
        describe={
            "key": "migratedFrom",
            "long_context": "config.Router.longContext",
            "background": "config.Router.background",
            "think": "config.Router.think",
            "web_search": "config.Router.webSearch",
            "default": "config.Router.default",
        },
    )
    return RoutesConfig(
        version=ROUTES_FILE_VERSION,
        description="Migrated from legacy config.Router format",
        routes=routes,
    )
