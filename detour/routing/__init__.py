"""Rule-based route selection.

Routes pair matchers with a destination provider/model and a list of
transformations. RouteManager evaluates them in priority order.
"""

from .defaults import create_default_routes
from .loader import (
    RoutesConfig,
    build_routes,
    export_routes_from_manager,
    find_routes_file,
    load_routes_config,
    load_routes_into_manager,
    migrate_from_legacy_config,
    save_routes_config,
    split_destination,
)
from .manager import EMERGENCY_PROVIDER_MODEL, RouteManager
from .registry import (
    MatcherRegistry,
    TransformationRegistry,
    default_matcher_registry,
    default_transformation_registry,
)
from .types import (
    EvaluatedRoute,
    Matcher,
    ProxyRequest,
    Route,
    RouteContext,
    RouteSelectionResult,
    Transformation,
)

__all__ = [
    # Types
    "EvaluatedRoute",
    "Matcher",
    "ProxyRequest",
    "Route",
    "RouteContext",
    "RouteSelectionResult",
    "Transformation",
    # Registries
    "MatcherRegistry",
    "TransformationRegistry",
    "default_matcher_registry",
    "default_transformation_registry",
    # Manager
    "EMERGENCY_PROVIDER_MODEL",
    "RouteManager",
    "create_default_routes",
    # Loader
    "RoutesConfig",
    "build_routes",
    "export_routes_from_manager",
    "find_routes_file",
    "load_routes_config",
    "load_routes_into_manager",
    "migrate_from_legacy_config",
    "save_routes_config",
    "split_destination",
]
