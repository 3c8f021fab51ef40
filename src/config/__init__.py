"""Configuration loading for registry sync.

Configuration is loaded from a single config/config.yaml file with
environment variable expansion (``${VAR}`` / ``${VAR:-default}``).

Usage:
    >>> from config import get_config
    >>> config = get_config()
    >>> config.get_queue_options("email-delivery")
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    QUEUE_NAMES,
    RegistrySyncConfig,
    config_from_dict,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "QUEUE_NAMES",
    "RegistrySyncConfig",
    "config_from_dict",
    "get_config",
    "load_config",
    "reset_config",
    "set_config",
]
