"""Configuration loader and validator."""

from pathlib import Path
from typing import Any, Optional

import yaml

from tourney.paths import get_config_path

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Dictionary with configuration values

    Raises:
        ConfigError: If file not found or invalid YAML
    """
    config_file = Path(path)

    if not config_file.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if config is None:
        raise ConfigError("Config file is empty")
    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a mapping")

    return config


def _non_negative_int(value: Any, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration values.

    All keys are optional:
        database: {path: ..., url: ...}
        points: {win: 3, draw: 1, loss: 0}
        scheduling: {default_delay_hours: 24}
        log_level: INFO
        server: {host: 127.0.0.1, port: 8000}

    Args:
        config: Configuration dictionary

    Returns:
        Validated and normalized configuration

    Raises:
        ConfigError: If validation fails
    """
    validated: dict[str, Any] = {}

    # Database (optional, default .tourney/tourney.sqlite)
    database = config.get("database", {}) or {}
    if not isinstance(database, dict):
        raise ConfigError("database must be a dictionary")
    validated["database"] = {"path": database.get("path"), "url": database.get("url")}

    # Points scheme (optional, default 3/1/0)
    points = config.get("points", {}) or {}
    if not isinstance(points, dict):
        raise ConfigError("points must be a dictionary")
    validated["points"] = {
        "win": _non_negative_int(points.get("win", 3), "points.win"),
        "draw": _non_negative_int(points.get("draw", 1), "points.draw"),
        "loss": _non_negative_int(points.get("loss", 0), "points.loss"),
    }

    # Scheduling (optional, default 24h after generation)
    scheduling = config.get("scheduling", {}) or {}
    if not isinstance(scheduling, dict):
        raise ConfigError("scheduling must be a dictionary")
    delay = scheduling.get("default_delay_hours", 24)
    if not isinstance(delay, int) or isinstance(delay, bool) or delay < 1:
        raise ConfigError(f"scheduling.default_delay_hours must be a positive integer, got {delay!r}")
    validated["scheduling"] = {"default_delay_hours": delay}

    # Log level (optional, default INFO)
    log_level = str(config.get("log_level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{log_level}'")
    validated["log_level"] = log_level

    # Server (optional)
    server = config.get("server", {}) or {}
    if not isinstance(server, dict):
        raise ConfigError("server must be a dictionary")
    port = server.get("port", 8000)
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ConfigError(f"server.port must be between 1 and 65535, got {port!r}")
    validated["server"] = {"host": server.get("host", "127.0.0.1"), "port": port}

    return validated


def load_and_validate_config(path: str) -> dict[str, Any]:
    """Load and validate configuration in one step.

    Args:
        path: Path to YAML config file

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If loading or validation fails
    """
    config = load_config(path)
    return validate_config(config)


def resolve_config(path: Optional[str] = None) -> dict[str, Any]:
    """Load the config from path, $TOURNEY_CONFIG, or defaults.

    Raises:
        ConfigError: If a named file cannot be loaded or validated
    """
    if path is None:
        env_path = get_config_path()
        path = str(env_path) if env_path else None
    if path is None:
        return validate_config({})
    return load_and_validate_config(path)
