"""Configuration management for the LegisMCP client."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Tool server connection settings."""

    url: str
    api_key: str
    protocol_version: str = "2024-11-05"
    client_name: str = "legismcp"
    client_version: str | None = None  # Defaults to the package version
    request_timeout: float = 30.0  # Per-call deadline in seconds
    retry_attempts: int = 3
    retry_delay: float = 1.0  # Delay before the first reconnection attempt in seconds


class TelemetryConfig(BaseModel):
    """Tool-call usage logging."""

    enabled: bool = False
    endpoint: str = "https://api.example.com"
    access_token: str | None = None
    timeout: float = 10.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str | None = None
    format: str = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"


class Config(BaseModel):
    """Main configuration."""

    version: str | None = None  # Config version, should match package version
    server: ServerConfig
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class EnvironmentOverrides(BaseSettings):
    """Settings taken from ``LEGISMCP_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="LEGISMCP_", extra="ignore")

    server_url: str | None = None
    api_key: str | None = None
    access_token: str | None = None

    def apply(self, data: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``data`` with the environment values applied."""
        overrides: dict[str, Any] = {}
        if self.server_url:
            overrides.setdefault("server", {})["url"] = self.server_url
        if self.api_key:
            overrides.setdefault("server", {})["api_key"] = self.api_key
        if self.access_token:
            overrides.setdefault("telemetry", {})["access_token"] = self.access_token
        return merge_configs(data, overrides)


def expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(data, dict):
        return {key: expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        # Expand ${VAR_NAME} syntax
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            return os.environ.get(var_name, data)
        if data.startswith("~"):
            return str(Path(data).expanduser())
        return data
    return data


def get_user_config_directory() -> Path:
    """Get platform-specific user config directory.

    Returns:
        - Windows: %LOCALAPPDATA%/legismcp or %APPDATA%/legismcp
        - Linux/macOS: $XDG_CONFIG_HOME/legismcp or ~/.config/legismcp
    """
    if os.name == "nt":
        appdata = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        if appdata:
            return Path(appdata) / "legismcp"
        return Path.home() / "legismcp"

    xdg_config_home = os.getenv("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / "legismcp"
    return Path.home() / ".config" / "legismcp"


def get_user_config_path() -> Path:
    return get_user_config_directory() / "config.yaml"


def get_project_config_path() -> Path:
    return Path.cwd() / ".legismcp" / "config.yaml"


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two configuration dictionaries.

    Args:
        base: Base configuration
        override: Configuration to merge (takes priority)

    Returns:
        Merged configuration
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def get_default_config() -> dict[str, Any]:
    """Get default configuration (without server credentials)."""
    return {
        "server": {
            "protocol_version": "2024-11-05",
            "client_name": "legismcp",
            "request_timeout": 30.0,
            "retry_attempts": 3,
            "retry_delay": 1.0,
        },
        "telemetry": {"enabled": False},
        "logging": {},
    }


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(
    config_path: str | Path | None = None,
) -> tuple[Config, dict[str, Any]]:
    """Load configuration with hierarchical fallback.

    Configuration priority (lowest to highest):
    1. Default config
    2. User global config (~/.config/legismcp/config.yaml)
    3. Project-level config (./.legismcp/config.yaml)
    4. ``LEGISMCP_SERVER_URL``, ``LEGISMCP_API_KEY`` and ``LEGISMCP_ACCESS_TOKEN``

    If ``config_path`` is given, it replaces steps 2 and 3.

    Args:
        config_path: Path to configuration file. If None, uses hierarchical loading.

    Returns:
        Tuple of (loaded Config, metadata dict with 'sources' list and 'primary_source')

    Raises:
        FileNotFoundError: If ``config_path`` does not exist
        ValueError: If the resulting configuration is invalid
    """
    config_data = get_default_config()
    config_sources = []

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        config_data = merge_configs(config_data, _read_yaml(config_path))
        config_sources.append(("specified", str(config_path)))
        logger.debug(f"Loaded config from: {config_path}")
    else:
        for label, path in (
            ("user", get_user_config_path()),
            ("project-level", get_project_config_path()),
        ):
            if path.exists():
                config_data = merge_configs(config_data, _read_yaml(path))
                config_sources.append((label, str(path)))
                logger.debug(f"Loaded {label} config from: {path}")

    config_data = EnvironmentOverrides().apply(expand_env_vars(config_data))

    try:
        config = Config(**config_data)
    except Exception as e:
        primary_source = config_sources[-1][1] if config_sources else "default"
        raise ValueError(f"Invalid configuration in {primary_source}: {e}") from e

    from legismcp import __version__ as package_version

    if config.version is not None and config.version != package_version:
        logger.warning(
            f"Config version {config.version} does not match package version {package_version}"
        )

    metadata = {
        "sources": config_sources,
        "primary_source": config_sources[-1] if config_sources else ("default", "builtin"),
    }
    return config, metadata


def create_default_config(output_path: str | Path) -> None:
    """Create a starter configuration file.

    Args:
        output_path: Where to write the configuration file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    default_config = {
        "server": {
            "url": "https://mcp.example.com/mcp",
            "api_key": "${LEGISMCP_API_KEY}",
            "request_timeout": 30.0,
            "retry_attempts": 3,
            "retry_delay": 1.0,
        },
        "telemetry": {
            "enabled": False,
            "endpoint": "https://api.example.com",
            "access_token": "${LEGISMCP_ACCESS_TOKEN}",
        },
        "logging": {
            "level": "INFO",
            "file": "~/.legismcp/logs/legismcp.log",
        },
    }

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
