"""Route manager.

Owns the set of routes for one proxy instance and picks exactly one
destination per request. Routes are evaluated highest priority first;
ties keep registration order. The first route whose matchers all pass
wins and its transformations are applied to the outbound request.

The route table is copy-on-write: administrative changes build a new
sorted tuple under a lock and swap it in, so select_route can iterate
its snapshot without locking while routes are being edited.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any

from ..exceptions import RegistryError, RouteConfigError
from .registry import (
    MatcherRegistry,
    TransformationRegistry,
    default_matcher_registry,
    default_transformation_registry,
)
from .types import EvaluatedRoute, ProxyRequest, Route, RouteContext, RouteSelectionResult

EMERGENCY_PROVIDER_MODEL = "anthropic,claude-3-5-sonnet-latest"


class RouteManager:
    """Priority-ordered route table with matcher/transformation registries.

    Usage:
        manager = RouteManager()
        manager.register_route(manager.create_route_from_config({...}))
        result = manager.select_route(request, context)
        print(result.provider_model)
    """

    def __init__(
        self,
        matcher_registry: MatcherRegistry | None = None,
        transformation_registry: TransformationRegistry | None = None,
        logger: logging.Logger | None = None,
    ):
        self.matcher_registry = matcher_registry or default_matcher_registry()
        self.transformation_registry = transformation_registry or default_transformation_registry()
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._routes: dict[str, Route] = {}
        self._sorted: tuple[Route, ...] = ()
        self._selections = 0
        self._fallbacks = 0

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def _publish(self, routes: dict[str, Route]) -> None:
        # Caller holds the lock. sorted() is stable, so ties keep insertion order.
        self._routes = routes
        self._sorted = tuple(sorted(routes.values(), key=lambda r: r.priority, reverse=True))

    def register_route(self, route: Route) -> None:
        with self._lock:
            routes = dict(self._routes)
            if route.id in routes:
                self.logger.warning("Route with ID %s already exists. Replacing.", route.id)
            routes[route.id] = route
            self._publish(routes)
        self.logger.debug("Registered route: %s (priority: %d)", route.id, route.priority)

    def register_routes(self, routes: list[Route]) -> None:
        with self._lock:
            table = dict(self._routes)
            for route in routes:
                if route.id in table:
                    self.logger.warning("Route with ID %s already exists. Replacing.", route.id)
                table[route.id] = route
            self._publish(table)
        self.logger.debug("Registered %d routes", len(routes))

    def unregister_route(self, route_id: str) -> bool:
        with self._lock:
            if route_id not in self._routes:
                return False
            routes = dict(self._routes)
            del routes[route_id]
            self._publish(routes)
        self.logger.debug("Unregistered route: %s", route_id)
        return True

    def set_route_enabled(self, route_id: str, enabled: bool) -> bool:
        with self._lock:
            route = self._routes.get(route_id)
            if route is None:
                return False
            routes = dict(self._routes)
            routes[route_id] = replace(route, enabled=enabled)
            self._publish(routes)
        self.logger.debug("Route %s %s", route_id, "enabled" if enabled else "disabled")
        return True

    def clear(self) -> None:
        with self._lock:
            self._publish({})

    def get_route(self, route_id: str) -> Route | None:
        return self._routes.get(route_id)

    def get_all_routes(self) -> list[Route]:
        """All routes, highest priority first."""
        return list(self._sorted)

    def __len__(self) -> int:
        return len(self._sorted)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _evaluate_route(self, route: Route, request: ProxyRequest, context: RouteContext) -> bool:
        for matcher in route.matchers:
            if not matcher.evaluate(request, context):
                self.logger.debug("Route %s: matcher %s failed", route.id, matcher.type)
                return False
        return True

    def _apply_transformations(
        self, route: Route, request: ProxyRequest, context: RouteContext
    ) -> None:
        for transformation in route.transformations:
            try:
                self.logger.debug(
                    "Applying transformation %s for route %s", transformation.type, route.id
                )
                transformation.apply(request, context)
            except Exception as e:
                self.logger.error(
                    "Error applying transformation %s for route %s: %s",
                    transformation.type,
                    route.id,
                    e,
                    extra={"event": "route.transformation_failed", "route": route.id},
                )

    def apply_route(self, route: Route, request: ProxyRequest, context: RouteContext) -> None:
        """Apply a route's transformations without evaluating its matchers."""
        self._apply_transformations(route, request, context)

    def select_route(self, request: ProxyRequest, context: RouteContext) -> RouteSelectionResult:
        """Select the destination for a request.

        Always returns a result. Matcher and transformation failures are
        logged and treated as a non-match or skipped step respectively.
        """
        start = time.perf_counter()
        routes = self._sorted  # Snapshot; never mutated in place
        evaluated: list[EvaluatedRoute] = []
        with self._lock:
            self._selections += 1

        for route in routes:
            if not route.enabled:
                evaluated.append(EvaluatedRoute(route, False, "Route is disabled"))
                continue

            try:
                matched = self._evaluate_route(route, request, context)
            except Exception as e:
                self.logger.error(
                    "Error evaluating route %s: %s",
                    route.id,
                    e,
                    extra={"event": "route.matcher_failed", "route": route.id},
                )
                evaluated.append(EvaluatedRoute(route, False, f"Error: {e}"))
                continue

            if not matched:
                evaluated.append(EvaluatedRoute(route, False, "One or more matchers failed"))
                continue

            evaluated.append(EvaluatedRoute(route, True, "All matchers passed"))
            self._apply_transformations(route, request, context)
            elapsed = (time.perf_counter() - start) * 1000
            self.logger.info(
                "Selected route: %s -> %s (%.2fms)",
                route.id,
                route.provider_model,
                elapsed,
                extra={"event": "route.selected", "route": route.id},
            )
            return RouteSelectionResult(
                provider_model=route.provider_model,
                route=route,
                evaluated_routes=evaluated,
                used_fallback=False,
                selection_time_ms=elapsed,
            )

        with self._lock:
            self._fallbacks += 1
        elapsed = (time.perf_counter() - start) * 1000
        if routes:
            fallback = routes[-1]
            self.logger.warning(
                "No route matched. Using fallback: %s -> %s",
                fallback.id,
                fallback.provider_model,
                extra={"event": "route.fallback", "route": fallback.id},
            )
            return RouteSelectionResult(
                provider_model=fallback.provider_model,
                route=fallback,
                evaluated_routes=evaluated,
                used_fallback=True,
                selection_time_ms=elapsed,
            )

        self.logger.error(
            "No routes registered! Using emergency fallback %s",
            EMERGENCY_PROVIDER_MODEL,
            extra={"event": "route.emergency_fallback"},
        )
        return RouteSelectionResult(
            provider_model=EMERGENCY_PROVIDER_MODEL,
            route=None,
            evaluated_routes=evaluated,
            used_fallback=True,
            selection_time_ms=elapsed,
        )

    # ------------------------------------------------------------------
    # Construction from config
    # ------------------------------------------------------------------

    def create_route_from_config(self, data: dict[str, Any]) -> Route:
        """Build a Route from its JSON description.

        Unknown or invalid matcher/transformation entries are dropped with a
        warning; the route is still created. The registries count unknown
        types so misconfiguration can be detected.

        Raises:
            RouteConfigError: If id, provider or model is missing
        """
        if not isinstance(data, dict):
            raise RouteConfigError("Route entry must be an object", details={"entry": data})
        missing = [key for key in ("id", "provider", "model") if not data.get(key)]
        if missing:
            raise RouteConfigError(
                "Route is missing required fields",
                details={"route": data.get("id"), "missing": missing},
            )

        try:
            priority = int(data.get("priority", 0))
        except (TypeError, ValueError) as e:
            raise RouteConfigError(
                "Route priority must be an integer",
                details={"route": data["id"], "priority": data.get("priority")},
            ) from e

        matchers = []
        for spec in data.get("matchers") or []:
            try:
                matchers.append(self.matcher_registry.create(spec))
            except RegistryError as e:
                self.logger.warning(
                    "Route %s: dropping matcher: %s",
                    data["id"],
                    e,
                    extra={"event": "route.unknown_matcher", "route": data["id"]},
                )

        transformations = []
        for spec in data.get("transformations") or []:
            try:
                transformations.append(self.transformation_registry.create(spec))
            except RegistryError as e:
                self.logger.warning(
                    "Route %s: dropping transformation: %s",
                    data["id"],
                    e,
                    extra={"event": "route.unknown_transformation", "route": data["id"]},
                )

        return Route(
            id=data["id"],
            provider=data["provider"],
            model=data["model"],
            priority=priority,
            description=data.get("description", ""),
            tags=tuple(data.get("tags") or ()),
            matchers=tuple(matchers),
            transformations=tuple(transformations),
            enabled=data.get("enabled", True) is not False,
            metadata=dict(data.get("metadata") or {}),
        )

    def stats(self) -> dict:
        return {
            "routes": len(self._sorted),
            "enabled": sum(1 for r in self._sorted if r.enabled),
            "selections": self._selections,
            "fallbacks": self._fallbacks,
            "unknown_matcher_types": dict(self.matcher_registry.unknown_types),
            "unknown_transformation_types": dict(self.transformation_registry.unknown_types),
        }
