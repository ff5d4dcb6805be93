# === MODULE PURPOSE ===
# Configuration management for the trading simulator.
# Loads YAML configuration files and provides typed access to settings.

# === KEY CONCEPTS ===
# - YAML-based: Human-readable configuration format
# - Dot-path access: config.get("market.update_interval")
# - Environment overrides: ${VAR:default} values and WEB_* / TRADING_* variables
# - Missing file: falls back to built-in defaults so the engine always starts

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "trading-config.yaml"

DEFAULTS: dict[str, Any] = {
    "trading": {
        "starting_balance": 1000.0,
        "default_leverage": 1,
        "max_leverage": 10,
        "notification_limit": 50,
        "seed_default_stocks": True,
    },
    "market": {
        "update_interval": 5,
        "auto_update": True,
        "volatility": 50,
        "min_total_shares": 100,
    },
    "persistence": {
        "backend": "json",
        "path": "data/trading-state.json",
    },
    "web": {
        "host": "0.0.0.0",
        "port": 8000,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
}


def resolve_env(value: Any) -> Any:
    """Resolve ${VAR:default} or ${VAR} string values from the environment."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        inner = value[2:-1]
        if ":" in inner:
            var_name, default = inner.split(":", 1)
        else:
            var_name, default = inner, ""
        return os.environ.get(var_name, default)
    return value


class Config:
    """
    Configuration loader and accessor.

    Usage:
        config = Config.load("config/trading-config.yaml")

        # Access nested values
        path = config.get("persistence.path", default="data/trading-state.json")

        # Access with type checking
        interval = config.get_int("market.update_interval", default=5)
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data

    @classmethod
    def load(cls, config_path: str | Path) -> "Config":
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded configuration from {path}")
        return cls(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from a dictionary."""
        return cls(data)

    @classmethod
    def defaults(cls) -> "Config":
        """Built-in configuration."""
        return cls(_deep_merge({}, DEFAULTS))

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by dot-separated key.

        Falls back to the built-in default, then to `default`.
        """
        value = _lookup(self._data, key)
        if value is None:
            value = _lookup(DEFAULTS, key)
        if value is None:
            return default
        return resolve_env(value)

    def get_str(self, key: str, default: str = "") -> str:
        value = self.get(key, default)
        return str(value) if value is not None else default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on")
        return bool(value) if value is not None else default

    def get_dict(self, key: str, default: dict | None = None) -> dict:
        value = self.get(key, default)
        if isinstance(value, dict):
            return {k: resolve_env(v) for k, v in value.items()}
        return default if default is not None else {}

    @property
    def raw(self) -> dict[str, Any]:
        """Access raw configuration data."""
        return self._data

    def __repr__(self) -> str:
        return f"Config({list(self._data.keys())})"


def _lookup(data: dict[str, Any], key: str) -> Any:
    value: Any = data
    for k in key.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(k)
        if value is None:
            return None
    return value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = _deep_merge(result[k], v)
        elif isinstance(v, dict):
            result[k] = _deep_merge({}, v)
        else:
            result[k] = v
    return result


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration, falling back to built-in defaults.

    Args:
        config_path: YAML file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        Config instance
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        logger.warning(f"Config file not found at {path}, using built-in defaults")
        return Config.defaults()
    return Config.load(path)


def get_web_config(config: Config | None = None) -> dict[str, Any]:
    """
    Get web server configuration.

    Environment variables:
        WEB_HOST: Host to bind to (default: web.host)
        WEB_PORT: Port to listen on (default: web.port)
    """
    config = config or Config.defaults()
    return {
        "host": os.getenv("WEB_HOST", config.get_str("web.host", "0.0.0.0")),
        "port": int(os.getenv("WEB_PORT", str(config.get_int("web.port", 8000)))),
    }


def get_persistence_config(config: Config | None = None) -> dict[str, Any]:
    """
    Get persistence backend configuration.

    Environment variables:
        TRADING_STATE_PATH: JSON state file (overrides persistence.path)
        TRADING_DB_PASSWORD: PostgreSQL password (overrides persistence.database.password)

    Returns:
        Dictionary with:
            - backend: "json", "postgres" or "memory"
            - path: JSON state file path
            - database: PostgreSQL connection settings
    """
    config = config or Config.defaults()
    database = config.get_dict("persistence.database", {})
    password = os.getenv("TRADING_DB_PASSWORD")
    if password:
        database["password"] = password

    return {
        "backend": config.get_str("persistence.backend", "json").lower(),
        "path": os.getenv("TRADING_STATE_PATH", config.get_str("persistence.path")),
        "database": database,
    }
