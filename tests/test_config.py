"""Tests for configuration loading and the exception hierarchy."""

import json

import pytest

from detour.config import ProxyConfig, RouterConfig, load_config
from detour.exceptions import ConfigurationError, DetourError, RouteConfigError


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.json")

        assert config.port == 3456
        assert config.max_tool_rounds == 10
        assert config.router.default is None

    def test_reads_legacy_keys(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "HOST": "0.0.0.0",
                    "PORT": "4000",
                    "APIKEY": "secret",
                    "LOG_DIR": str(tmp_path / "logs"),
                    "BLOCK_COMMANDS": ["/compact"],
                    "Providers": [
                        {
                            "name": "openrouter",
                            "api_base_url": "https://openrouter.ai/api/v1/",
                            "api_key": "k",
                            "models": ["google/gemini-2.5-pro"],
                        }
                    ],
                    "Router": {
                        "default": "anthropic,claude-sonnet-4",
                        "longContext": "openrouter,google/gemini-2.5-pro",
                        "longContextThreshold": 90000,
                    },
                }
            )
        )

        config = load_config(path)

        assert config.host == "0.0.0.0"
        assert config.port == 4000
        assert config.api_key == "secret"
        assert config.block_commands == ["/compact"]
        provider = config.get_provider("openrouter")
        assert provider.api_base_url == "https://openrouter.ai/api/v1"
        assert config.router.long_context_threshold == 90000
        assert config.get_provider("missing") is None

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="Failed to read config file"):
            load_config(path)

    def test_provider_requires_name_and_url(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"Providers": [{"name": "x"}]}))

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_router_round_trip(self):
        router = RouterConfig.from_dict({"default": "a,b", "webSearch": "c,d"})

        assert router.to_dict() == {"default": "a,b", "webSearch": "c,d"}

    def test_local_messages_url(self):
        assert ProxyConfig(port=9999).local_messages_url == "http://127.0.0.1:9999/v1/messages"


class TestExceptions:
    def test_details_rendered(self):
        error = RouteConfigError("Bad routes", details={"path": "r.json"})

        assert str(error) == "Bad routes (path=r.json)"
        assert isinstance(error, ConfigurationError)
        assert isinstance(error, DetourError)

    def test_without_details(self):
        assert str(DetourError("plain")) == "plain"
