"""Custom exceptions for Detour.

All exceptions inherit from DetourError so callers can catch any
Detour-related failure in one place:

    from detour.exceptions import DetourError, RouteConfigError

    try:
        config = load_routes_config("routes.json")
    except RouteConfigError as e:
        print(f"Bad routes file: {e}")
    except DetourError as e:
        print(f"Detour error: {e}")

Note that processor, matcher, transformation and tool-handler failures are
never raised out of the request pipeline. They are recorded on the pipeline
result and logged instead. The classes here cover configuration, provider
resolution, and the streaming tool loop.
"""

from __future__ import annotations

from typing import Any


class DetourError(Exception):
    """Base exception for all Detour errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(DetourError):
    """Raised when the proxy configuration file cannot be used.

    Example:
        ConfigurationError(
            "Config file is not valid JSON",
            details={"path": "~/.claude-code-router/config.json"}
        )
    """

    pass


class RouteConfigError(ConfigurationError):
    """Raised when a routes file is missing or structurally invalid.

    Example:
        RouteConfigError(
            "No routes configuration file found",
            details={"checked": ["./routes.json"]}
        )
    """

    pass


class RegistryError(DetourError):
    """Raised when a matcher or transformation type cannot be created.

    The route manager catches this when building routes from config and
    drops the offending entry with a warning.
    """

    pass


class ProviderError(DetourError):
    """Raised when a "provider,model" destination cannot be resolved.

    Example:
        ProviderError(
            "Unknown provider",
            details={"provider": "foo", "known_providers": ["anthropic"]}
        )
    """

    pass


class ToolLoopLimitError(DetourError):
    """Raised when agent tool calls keep the conversation going too long.

    Each round is one tool-augmented continuation request issued by the
    stream rewriter. Exceeding the configured cap ends the stream.

    Example:
        ToolLoopLimitError(
            "Tool loop exceeded maximum rounds",
            details={"max_rounds": 10}
        )
    """

    pass


class StreamAbortedError(DetourError):
    """Raised inside the stream rewriter when the shared abort signal fires.

    Treated as a benign termination, not a failure surfaced to the client.
    """

    pass
