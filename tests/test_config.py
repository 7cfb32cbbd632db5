"""Tests for configuration loading and startup wiring."""

import sys
import types

import pytest

from mcp_bridge.config.loader import (
    DEFAULT_TOOLS_CONFIG,
    Settings,
    get_enabled_providers,
    get_provider_config,
    load_tools_config,
)
from mcp_bridge.main import build_registry, create_transport, main, parse_args
from mcp_bridge.mcp.transport_sse import SseTransport
from mcp_bridge.mcp.transport_stdio import StdioTransport
from mcp_bridge.tools.example import tools as example_tools


@pytest.fixture
def tools_yaml(tmp_path):
    path = tmp_path / "tools.yaml"
    path.write_text(
        "enabled_providers:\n"
        "  - example\n"
        "providers:\n"
        "  example:\n"
        "    max_sleep_seconds: 5\n",
        encoding="utf-8",
    )
    return path


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.transport == "stdio"
        assert not settings.auth_enabled
        assert settings.effective_handler_timeout == 30.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MCP_BRIDGE_TRANSPORT", "sse")
        monkeypatch.setenv("MCP_BRIDGE_AUTH_TOKEN", "token")
        monkeypatch.setenv("MCP_BRIDGE_HANDLER_TIMEOUT", "0")

        settings = Settings(_env_file=None)

        assert settings.transport == "sse"
        assert settings.auth_enabled
        assert settings.effective_handler_timeout is None

    def test_unknown_transport_is_rejected(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, transport="websocket")


class TestToolsConfig:
    def test_load_from_file(self, tools_yaml):
        config = load_tools_config(tools_yaml)
        assert get_enabled_providers(config) == ["example"]
        assert get_provider_config("example", config) == {"max_sleep_seconds": 5}
        assert get_provider_config("missing", config) == {}

    def test_missing_file_falls_back_to_default(self, tmp_path):
        assert load_tools_config(tmp_path / "absent.yaml") == DEFAULT_TOOLS_CONFIG

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_tools_config(path) == {}
        assert get_enabled_providers({}) == ["example"]

    def test_explicitly_empty_provider_list(self):
        assert get_enabled_providers({"enabled_providers": []}) == []

    def test_malformed_provider_list(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("enabled_providers: example\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_tools_config(path)


class TestStartup:
    def test_build_registry_freezes(self, tools_yaml):
        registry = build_registry(Settings(_env_file=None, tools_config_path=str(tools_yaml)))
        assert registry.frozen
        assert registry.tool_count == 4

    def test_transport_is_selected_from_settings(self, registry):
        stdio = create_transport(Settings(_env_file=None, transport="stdio"), registry)
        sse = create_transport(Settings(_env_file=None, transport="sse"), registry)

        assert isinstance(stdio, StdioTransport)
        assert isinstance(sse, SseTransport)
        assert sse.app is not None
        assert sse.app.state.transport is sse

    def test_parse_args(self):
        args = parse_args(["--transport", "sse", "--port", "9000", "--config", "tools.yaml"])
        assert args.transport == "sse"
        assert args.port == 9000
        assert args.tools_config_path == "tools.yaml"
        assert args.host is None

    def test_duplicate_tool_aborts_startup(self, tmp_path, monkeypatch):
        path = tmp_path / "tools.yaml"
        # The same provider's tools registered under two names collide
        path.write_text("enabled_providers:\n  - example\n  - example_again\n", encoding="utf-8")

        alias = types.ModuleType("mcp_bridge.tools.example_again.tools")
        alias.register_tools = example_tools.register_tools
        monkeypatch.setitem(sys.modules, "mcp_bridge.tools.example_again.tools", alias)
        monkeypatch.setattr("mcp_bridge.main.setup_logging", lambda settings: None)

        with pytest.raises(SystemExit) as exc_info:
            main(["--transport", "stdio", "--config", str(path)])
        assert exc_info.value.code == 1
