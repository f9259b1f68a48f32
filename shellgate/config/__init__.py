"""Configuration module for shellgate."""

from shellgate.config.loader import ConfigError, load_config, get_config_path
from shellgate.config.schema import ServerConfig

__all__ = ["ServerConfig", "ConfigError", "load_config", "get_config_path"]
