"""Configuration layer: key registry plus the two-tier ConfigManager."""

from .manager import ConfigManager, get_config_manager, initialize_config
from .registry import REGISTRY, ConfigKey, get_config_key, validate_config_value

__all__ = [
    "ConfigManager",
    "ConfigKey",
    "REGISTRY",
    "get_config_key",
    "get_config_manager",
    "initialize_config",
    "validate_config_value",
]
