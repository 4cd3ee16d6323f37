"""Configuration models for Detour.

The proxy reads a single JSON config file (by default
``~/.claude-code-router/config.json``) with a ``Providers`` list, a flat
``Router`` section naming the destination for each legacy scenario, and
a few server keys. Everything is loaded into plain dataclasses.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

HOME_DIR = Path.home() / ".claude-code-router"
DEFAULT_CONFIG_PATH = HOME_DIR / "config.json"
DEFAULT_LOGS_DIR = HOME_DIR / "logs"


@dataclass
class RouterConfig:
    """Legacy flat routing table.

    Each value is a ``"provider,model"`` destination string, or None when
    that scenario is not configured.
    """

    default: str | None = None
    background: str | None = None
    think: str | None = None
    long_context: str | None = None
    long_context_threshold: int | None = None
    web_search: str | None = None

    # Destinations for the /compact and think pre-processors
    compact: str | None = None
    ultrathink: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RouterConfig:
        data = data or {}
        return cls(
            default=data.get("default"),
            background=data.get("background"),
            think=data.get("think"),
            long_context=data.get("longContext"),
            long_context_threshold=data.get("longContextThreshold"),
            web_search=data.get("webSearch"),
            compact=data.get("compact"),
            ultrathink=data.get("ultrathink"),
        )

    def to_dict(self) -> dict[str, Any]:
        pairs = {
            "default": self.default,
            "background": self.background,
            "think": self.think,
            "longContext": self.long_context,
            "longContextThreshold": self.long_context_threshold,
            "webSearch": self.web_search,
            "compact": self.compact,
            "ultrathink": self.ultrathink,
        }
        return {k: v for k, v in pairs.items() if v is not None}


@dataclass
class ProviderConfig:
    """An upstream provider speaking the Anthropic messages API."""

    name: str
    api_base_url: str
    api_key: str | None = None
    models: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        if "name" not in data or "api_base_url" not in data:
            raise ConfigurationError(
                "Provider entry requires 'name' and 'api_base_url'",
                details={"entry": data},
            )
        return cls(
            name=data["name"],
            api_base_url=data["api_base_url"].rstrip("/"),
            api_key=data.get("api_key"),
            models=list(data.get("models", [])),
        )


@dataclass
class ProxyConfig:
    """Proxy configuration."""

    # Server
    host: str = "127.0.0.1"
    port: int = 3456
    api_key: str | None = None  # Sent as x-api-key on continuation requests

    # Upstreams
    providers: list[ProviderConfig] = field(default_factory=list)
    default_upstream_url: str = "https://api.anthropic.com"

    # Routing
    router: RouterConfig = field(default_factory=RouterConfig)
    routes_path: str | None = None  # None = search the standard locations

    # Audit records from /compact and think routing
    logs_dir: str | None = str(DEFAULT_LOGS_DIR)

    # Session usage cache
    session_cache_max_entries: int = 1000
    session_cache_ttl_seconds: int = 3600

    # Agents
    agents_enabled: bool = True
    max_tool_rounds: int = 10
    block_commands: list[str] = field(default_factory=list)  # e.g. ["/compact"]

    # Timeouts
    request_timeout_seconds: int = 300
    connect_timeout_seconds: int = 10

    def get_provider(self, name: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    @property
    def local_messages_url(self) -> str:
        """URL of this proxy's own /v1/messages endpoint."""
        return f"http://127.0.0.1:{self.port}/v1/messages"


def load_config(path: str | Path | None = None) -> ProxyConfig:
    """Load proxy configuration from a JSON file.

    Args:
        path: Config file path. Defaults to ~/.claude-code-router/config.json.

    Returns:
        Parsed ProxyConfig. A missing file yields the defaults.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed.
    """
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        logger.info("No config file at %s, using defaults", config_path)
        return ProxyConfig()

    try:
        data = json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            "Failed to read config file", details={"path": str(config_path), "error": e}
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            "Config file must contain a JSON object", details={"path": str(config_path)}
        )

    providers = data.get("Providers") or data.get("providers") or []
    config = ProxyConfig(
        providers=[ProviderConfig.from_dict(p) for p in providers],
        router=RouterConfig.from_dict(data.get("Router")),
    )
    if "HOST" in data:
        config.host = data["HOST"]
    if "PORT" in data:
        config.port = int(data["PORT"])
    if "APIKEY" in data:
        config.api_key = data["APIKEY"]
    if "LOG_DIR" in data:
        config.logs_dir = data["LOG_DIR"]
    if "ROUTES_PATH" in data:
        config.routes_path = data["ROUTES_PATH"]
    if "BLOCK_COMMANDS" in data:
        config.block_commands = list(data["BLOCK_COMMANDS"])

    logger.debug(
        "Loaded config from %s (%d providers)", config_path, len(config.providers)
    )
    return config
