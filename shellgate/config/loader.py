"""Configuration loading utilities."""

import re
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from shellgate.config.schema import ServerConfig

DEFAULT_CONFIG_PATH = Path("/etc/shellgate.conf")

# Short option names accepted by the original telnetd config files
LEGACY_KEYS = {
    "queue": "backlog",
    "timeout": "connection_timeout",
    "cmdtimeout": "command_timeout",
    "logfile": "log_file",
    "pidfile": "pid_file",
}

ALLOWED_COMMANDS_KEY = "allowed_commands"


class ConfigError(Exception):
    """Raised when configuration cannot be read or is invalid."""


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return DEFAULT_CONFIG_PATH


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Convert top-level keys to canonical snake_case field names."""
    result = {}
    for key, value in data.items():
        name = camel_to_snake(str(key))
        result[LEGACY_KEYS.get(name, name)] = value
    return result


def read_config_file(path: Path) -> dict[str, Any]:
    """
    Read a YAML config file into a dict with normalized keys.

    Raises ConfigError if the file is unreadable, malformed or not a mapping.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot load configuration from file {path}! Reason: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot load configuration from file {path}! Reason: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")

    return normalize_keys(data)


def extract_allowed_commands(data: dict[str, Any]) -> list[str]:
    """Validate and return the allowed commands list from raw config data."""
    if ALLOWED_COMMANDS_KEY not in data:
        raise ConfigError(f"{ALLOWED_COMMANDS_KEY} config value must be set!")

    commands = data[ALLOWED_COMMANDS_KEY]
    if not isinstance(commands, (list, tuple)):
        raise ConfigError(f"{ALLOWED_COMMANDS_KEY} is not a list")

    for item in commands:
        if not isinstance(item, str):
            raise ConfigError(f"{ALLOWED_COMMANDS_KEY} entries must be strings, got {item!r}")

    return list(commands)


def load_config(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> ServerConfig:
    """
    Load configuration from file and apply explicit overrides.

    Args:
        config_path: Optional path to config file. Uses default if not provided.
        overrides: Values that win over the file (e.g. from command-line options).
            None values are ignored; the allowed commands list cannot be overridden.

    Returns:
        Resolved configuration object.
    """
    path = config_path or get_config_path()
    data = read_config_file(path)
    data[ALLOWED_COMMANDS_KEY] = extract_allowed_commands(data)

    for key, value in normalize_keys(overrides or {}).items():
        if value is None or key == ALLOWED_COMMANDS_KEY:
            continue
        data[key] = value

    try:
        config = ServerConfig(**data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e

    logger.debug(f"Loaded configuration from {path}")
    return config


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"])
        parts.append(f"{field}: {item['msg']}")
    return "Invalid configuration: " + "; ".join(parts)
