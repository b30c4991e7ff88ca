"""Configuration loading for the audit stream bridge.

Configuration Structure
-----------------------

config/
    config.yaml          # Base settings (stream, reader, sink, retry)
    local.yaml           # LocalStack overlay (APP_ENVIRONMENT=local, default)
    production.yaml      # Production overlay (APP_ENVIRONMENT=production)

Usage Examples
--------------

    >>> from config import load_config, get_config
    >>>
    >>> config = load_config()
    >>> config.stream_name
    'audit-events'
    >>>
    >>> # Or use singleton pattern
    >>> config = get_config()

Configuration Priority
----------------------

1. overrides passed to load_config()
2. Environment overlay file
3. Base config.yaml
Environment variables are substituted wherever ${VAR} appears in YAML.
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    BridgeConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "BridgeConfig",
    "DEFAULT_CONFIG_FILE",
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
]
