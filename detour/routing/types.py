"""Core routing types.

A Route binds a list of Matchers (all must pass) to a destination
provider/model and a list of Transformations applied to the outbound
request when the route is selected. The RouteContext carries per-request
state through pre-processing and selection.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..session_cache import Usage


@dataclass
class ProxyRequest:
    """An inbound request as seen by the pipeline.

    ``body`` is mutated in place by pre-processors and transformations and
    is what gets forwarded upstream. Header names are lower-cased.
    """

    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}


@dataclass
class RouteContext:
    """Mutable per-request state threaded through the whole pipeline.

    ``token_count`` is only meaningful once the context enricher has run.
    ``detected_commands`` behaves as an insertion-ordered set.
    """

    config: Any = None
    token_count: int = 0
    session_id: str | None = None
    last_usage: Usage | None = None
    detected_commands: list[str] | None = None
    patterns: list[str] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    start_time: float = field(default_factory=lambda: time.time() * 1000)

    def add_command(self, command: str) -> bool:
        """Record a detected command. Returns False if already present."""
        if self.detected_commands is None:
            self.detected_commands = []
        if command in self.detected_commands:
            return False
        self.detected_commands.append(command)
        return True

    def has_command(self, command: str) -> bool:
        return bool(self.detected_commands) and command in self.detected_commands


class Matcher(ABC):
    """A named predicate deciding whether a route applies.

    Matchers are stateless apart from their condition and never mutate
    the request or the context.
    """

    type: str = ""

    def __init__(self, condition: dict[str, Any] | None = None, description: str | None = None):
        self.condition = condition or {}
        self.description = description

    @abstractmethod
    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        pass

    def to_config(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "condition": self.condition}
        if self.description:
            data["description"] = self.description
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.condition!r})"


class Transformation(ABC):
    """A named in-place mutation of the outbound request body."""

    type: str = ""

    def __init__(self, config: dict[str, Any] | None = None, description: str | None = None):
        self.config = config or {}
        self.description = description

    @abstractmethod
    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        pass

    def to_config(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "config": self.config}
        if self.description:
            data["description"] = self.description
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"


@dataclass(frozen=True)
class Route:
    """A prioritized routing rule. Higher priority is evaluated first.

    A route with no matchers matches every request, which is how the
    default route is expressed.
    """

    id: str
    provider: str
    model: str
    priority: int = 0
    description: str = ""
    tags: tuple[str, ...] = ()
    matchers: tuple[Matcher, ...] = ()
    transformations: tuple[Transformation, ...] = ()
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def provider_model(self) -> str:
        return f"{self.provider},{self.model}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "priority": self.priority,
            "description": self.description,
            "tags": list(self.tags),
            "matchers": [m.to_config() for m in self.matchers],
            "provider": self.provider,
            "model": self.model,
            "transformations": [t.to_config() for t in self.transformations],
            "enabled": self.enabled,
            "metadata": dict(self.metadata),
        }


@dataclass
class EvaluatedRoute:
    route: Route
    matched: bool
    reason: str | None = None


@dataclass
class RouteSelectionResult:
    """Outcome of one select_route call. Always carries a destination."""

    provider_model: str
    route: Route | None = None
    evaluated_routes: list[EvaluatedRoute] = field(default_factory=list)
    used_fallback: bool = False
    selection_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "route": self.route.id if self.route else None,
            "provider_model": self.provider_model,
            "used_fallback": self.used_fallback,
            "selection_time_ms": round(self.selection_time_ms, 3),
            "evaluated": [
                {"route": e.route.id, "matched": e.matched, "reason": e.reason}
                for e in self.evaluated_routes
            ],
        }
