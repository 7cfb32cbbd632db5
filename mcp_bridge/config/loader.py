"""Configuration loading from environment and YAML files."""

import copy
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TOOLS_CONFIG = {"enabled_providers": ["example"], "providers": {}}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server info
    server_name: str = "mcp-bridge"
    server_version: str = "1.0.0"

    # Transport, chosen once at startup
    transport: Literal["stdio", "sse"] = "stdio"

    # Host and port (sse transport)
    host: str = "0.0.0.0"
    port: int = 8000

    # Authentication (sse transport); empty token disables it
    auth_token: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Timeouts (seconds); 0 disables the handler deadline
    handler_timeout: float = 30.0

    # Sessions
    session_timeout_minutes: int = 30
    session_cleanup_interval: float = 60.0
    sse_keepalive_seconds: float = 30.0

    # Framing
    max_frame_bytes: int = 1024 * 1024

    # Tool providers
    tools_config_path: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def auth_enabled(self) -> bool:
        """Check if authentication is enabled."""
        return bool(self.auth_token)

    @property
    def effective_handler_timeout(self) -> float | None:
        return self.handler_timeout if self.handler_timeout > 0 else None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Searched in order when no tools config path is configured
TOOLS_CONFIG_CANDIDATES = (
    Path("config/tools.yaml"),
    Path(__file__).resolve().parents[2] / "config" / "tools.yaml",
)


def find_tools_config() -> Path | None:
    """First existing tools config among the default locations."""
    return next((path for path in TOOLS_CONFIG_CANDIDATES if path.exists()), None)


def load_tools_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load the tool provider configuration.

    Args:
        config_path: YAML file to read. If None, the default locations are
            searched; if nothing is found the built-in default is used.

    Returns:
        Mapping with ``enabled_providers`` and per-provider ``providers`` settings.

    Raises:
        ValueError: If ``enabled_providers`` is present but not a list of names.
    """
    path = Path(config_path) if config_path is not None else find_tools_config()
    if path is None or not path.exists():
        return copy.deepcopy(DEFAULT_TOOLS_CONFIG)

    with path.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    providers = config.get("enabled_providers")
    if providers is not None and (
        not isinstance(providers, list) or not all(isinstance(p, str) for p in providers)
    ):
        raise ValueError(f"{path}: enabled_providers must be a list of provider names")
    return config


def get_enabled_providers(config: dict[str, Any] | None = None) -> list[str]:
    """Provider names to load, in order; the example provider when unset."""
    if config is None:
        config = load_tools_config()
    providers = config.get("enabled_providers")
    if providers is None:
        providers = DEFAULT_TOOLS_CONFIG["enabled_providers"]
    return list(providers)


def get_provider_config(provider_name: str, config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Settings block handed to one provider's register_tools()."""
    if config is None:
        config = load_tools_config()
    providers = config.get("providers") or {}
    return providers.get(provider_name) or {}
