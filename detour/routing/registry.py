"""
Matcher and Transformation registries.

Routes are declared in JSON with a ``type`` string per matcher and per
transformation. The registries map those strings to classes. Each
RouteManager owns its own registries, populated explicitly at startup,
so tests and multiple configurations never share mutable state.

Usage:
    matchers = default_matcher_registry()
    matchers.register("my_matcher", MyMatcher)
    matcher = matchers.create({"type": "my_matcher", "condition": {...}})
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Any, Generic, TypeVar

from ..exceptions import RegistryError
from .types import Matcher, Transformation

logger = logging.getLogger(__name__)

T = TypeVar("T", Matcher, Transformation)


class _Registry(Generic[T]):
    kind = "component"
    payload_key = "config"

    def __init__(self):
        self._classes: dict[str, type[T]] = {}
        self._lock = threading.Lock()
        # Unknown type -> number of times it was requested
        self.unknown_types: Counter[str] = Counter()

    def register(self, type_name: str, cls: type[T], *, override: bool = False) -> None:
        """
        Register a class under a type name.

        Raises:
            ValueError: If the name is already registered and override=False
        """
        with self._lock:
            if type_name in self._classes and not override:
                raise ValueError(
                    f"{self.kind.capitalize()} '{type_name}' already registered. "
                    "Use override=True to replace."
                )
            self._classes[type_name] = cls

    def unregister(self, type_name: str) -> None:
        with self._lock:
            self._classes.pop(type_name, None)

    def has(self, type_name: str) -> bool:
        return type_name in self._classes

    def get(self, type_name: str) -> type[T] | None:
        return self._classes.get(type_name)

    def types(self) -> list[str]:
        return sorted(self._classes)

    def create(self, spec: dict[str, Any]) -> T:
        """
        Instantiate a component from its JSON description.

        Raises:
            RegistryError: If the type is unknown or construction fails
        """
        if not isinstance(spec, dict):
            self.unknown_types[type(spec).__name__] += 1
            raise RegistryError(
                f"{self.kind.capitalize()} entry must be an object", details={"entry": spec}
            )
        type_name = spec.get("type")
        cls = self._classes.get(type_name) if isinstance(type_name, str) else None
        if cls is None:
            self.unknown_types[str(type_name)] += 1
            raise RegistryError(
                f"Unknown {self.kind} type",
                details={"type": type_name, "known": self.types()},
            )
        try:
            return cls(spec.get(self.payload_key) or {}, description=spec.get("description"))
        except (TypeError, ValueError) as e:
            raise RegistryError(
                f"Invalid {self.kind} configuration",
                details={"type": type_name, "error": e},
            ) from e


class MatcherRegistry(_Registry[Matcher]):
    kind = "matcher"
    payload_key = "condition"


class TransformationRegistry(_Registry[Transformation]):
    kind = "transformation"
    payload_key = "config"


def default_matcher_registry() -> MatcherRegistry:
    """Registry holding every built-in matcher type."""
    from .matchers import BUILTIN_MATCHERS

    registry = MatcherRegistry()
    for type_name, cls in BUILTIN_MATCHERS.items():
        registry.register(type_name, cls)
    return registry


def default_transformation_registry() -> TransformationRegistry:
    """Registry holding every built-in transformation type."""
    from .transformations import BUILTIN_TRANSFORMATIONS

    registry = TransformationRegistry()
    for type_name, cls in BUILTIN_TRANSFORMATIONS.items():
        registry.register(type_name, cls)
    return registry
