"""Configuration management package.

Provides configuration access with defaults, YAML file loading and
environment variable overrides.
"""

from atlink.config.config_manager import ConfigManager
from atlink.config.config_models import (
    Config,
    SerialConfig,
    ChannelConfig,
    LoggingConfig,
    LogLevel
)

__all__ = [
    'ConfigManager',
    'Config',
    'SerialConfig',
    'ChannelConfig',
    'LoggingConfig',
    'LogLevel',
]
