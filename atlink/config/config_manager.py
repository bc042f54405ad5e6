"""Configuration manager for atlink.

Provides singleton access to configuration layered from defaults, a YAML
file and environment variable overrides.
"""

from copy import deepcopy
from pathlib import Path
from typing import Optional, Dict, Any
import logging
import os

import yaml

from atlink.config.config_models import (
    Config,
    SerialConfig,
    ChannelConfig,
    LoggingConfig,
    LogLevel
)
from atlink.config.config_schema import ConfigSchema
from atlink.config.defaults import get_default_config

logger = logging.getLogger(__name__)


ENV_PREFIX = "ATLINK_"


class ConfigManager:
    """Singleton configuration manager.

    Loading order:
        1. Defaults
        2. YAML file (explicit path, ./atlink.yaml or ~/.atlink/config.yaml)
        3. ATLINK_<SECTION>_<KEY> environment variables
        4. JSON schema validation

    Example:
        >>> manager = ConfigManager.initialize()
        >>> manager.get_config().channel.default_timeout
        5.0
    """

    _instance: Optional['ConfigManager'] = None

    def __init__(self):
        """Private constructor. Use instance() or initialize() class methods."""
        if ConfigManager._instance is not None:
            raise RuntimeError("Use ConfigManager.instance() instead of constructor")
        self._config: Optional[Config] = None
        self._config_path: Optional[Path] = None
        self._config_source: Dict[str, str] = {}

    @classmethod
    def instance(cls) -> 'ConfigManager':
        """Get the initialized singleton.

        Raises:
            RuntimeError: If not yet initialized
        """
        if cls._instance is None:
            raise RuntimeError("ConfigManager not initialized. Call initialize() first.")
        return cls._instance

    @classmethod
    def initialize(cls,
                   config_path: Optional[Path] = None,
                   skip_validation: bool = False) -> 'ConfigManager':
        """Load configuration and return the singleton.

        Args:
            config_path: Path to a YAML file. If None, standard paths are searched.
            skip_validation: Skip schema validation

        Raises:
            ValueError: Configuration fails validation or is not valid YAML
            FileNotFoundError: An explicit config_path does not exist
        """
        if cls._instance is None:
            cls._instance = cls()
        manager = cls._instance
        manager._config_source = {}
        manager._config_path = None

        config_dict = get_default_config().to_dict()
        manager._mark_source(config_dict, "default")

        if config_path is None:
            config_path = cls._search_config_paths()
        elif not Path(config_path).exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        if config_path is not None:
            file_config = cls._load_from_file(Path(config_path))
            config_dict = cls._merge_configs(config_dict, file_config)
            manager._mark_source(file_config, "file")
            manager._config_path = Path(config_path)
            logger.debug(f"Loaded configuration from {config_path}")

        env_overrides = cls._apply_env_overrides()
        if env_overrides:
            config_dict = cls._merge_configs(config_dict, env_overrides)
            manager._mark_source(env_overrides, "env")

        if not skip_validation:
            is_valid, validation_errors = ConfigSchema.validate_config(config_dict)
            if not is_valid:
                raise ValueError("Configuration validation failed:\n" + "\n".join(
                    f"  - {error}" for error in validation_errors
                ))

        manager._config = cls._dict_to_config(config_dict)
        return manager

    @staticmethod
    def _search_config_paths() -> Optional[Path]:
        search_paths = [
            Path("./atlink.yaml"),
            Path.home() / ".atlink" / "config.yaml"
        ]

        for path in search_paths:
            if path.exists() and path.is_file():
                return path

        return None

    @staticmethod
    def _load_from_file(path: Path) -> Dict[str, Any]:
        with open(path, 'r', encoding='utf-8') as f:
            try:
                config_dict = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e

        if config_dict is None:
            return {}
        if not isinstance(config_dict, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return config_dict

    @staticmethod
    def _apply_env_overrides() -> Dict[str, Any]:
        """Collect ATLINK_SECTION_KEY environment overrides.

        Examples:
            ATLINK_SERIAL_PORT=/dev/ttyUSB2
            ATLINK_CHANNEL_DEFAULT_TIMEOUT=10
            ATLINK_CHANNEL_DEBUG=true
        """
        overrides: Dict[str, Dict[str, Any]] = {}

        for env_name, env_value in os.environ.items():
            if not env_name.startswith(ENV_PREFIX):
                continue

            parts = env_name[len(ENV_PREFIX):].lower().split('_', 1)
            if len(parts) != 2:
                continue

            section, key = parts
            overrides.setdefault(section, {})[key] = ConfigManager._parse_env_value(env_value)

        return overrides

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse an environment string into bool, int, float or str."""
        lowered = value.lower()
        if lowered in ('true', 'yes', 'on'):
            return True
        if lowered in ('false', 'no', 'off'):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    @staticmethod
    def _merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        merged = deepcopy(base)

        for section, section_values in override.items():
            if isinstance(section_values, dict):
                merged.setdefault(section, {})
                for key, value in section_values.items():
                    merged[section][key] = value
            else:
                merged[section] = section_values

        return merged

    def _mark_source(self, config: Dict[str, Any], source: str) -> None:
        for section, section_values in config.items():
            if isinstance(section_values, dict):
                for key in section_values.keys():
                    self._config_source[f"{section}.{key}"] = source

    @staticmethod
    def _dict_to_config(config_dict: Dict[str, Any]) -> Config:
        defaults = get_default_config()

        serial_dict = config_dict.get('serial', {})
        serial = SerialConfig(
            port=serial_dict.get('port', defaults.serial.port),
            baud_rate=serial_dict.get('baud_rate', defaults.serial.baud_rate),
            poll_interval=serial_dict.get('poll_interval', defaults.serial.poll_interval)
        )

        channel_dict = config_dict.get('channel', {})
        channel = ChannelConfig(
            default_timeout=channel_dict.get('default_timeout', defaults.channel.default_timeout),
            debug=channel_dict.get('debug', defaults.channel.debug),
            unsolicited_queue_size=channel_dict.get(
                'unsolicited_queue_size', defaults.channel.unsolicited_queue_size
            )
        )

        log_dict = config_dict.get('logging', {})
        level = log_dict.get('level', defaults.logging.level)
        logging_config = LoggingConfig(
            enabled=log_dict.get('enabled', defaults.logging.enabled),
            level=LogLevel(level.upper()) if isinstance(level, str) else level,
            log_to_file=log_dict.get('log_to_file', defaults.logging.log_to_file),
            log_to_console=log_dict.get('log_to_console', defaults.logging.log_to_console),
            log_file_path=log_dict.get('log_file_path', defaults.logging.log_file_path),
            max_file_size_mb=log_dict.get('max_file_size_mb', defaults.logging.max_file_size_mb),
            backup_count=log_dict.get('backup_count', defaults.logging.backup_count)
        )

        return Config(serial=serial, channel=channel, logging=logging_config)

    def get_config(self) -> Config:
        """Get the current configuration.

        Raises:
            RuntimeError: If configuration not loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call initialize() first.")
        return self._config

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    def get_source(self, key: str) -> str:
        """Where a value came from: "default", "file", "env" or "unknown".

        Args:
            key: Dotted key such as "channel.default_timeout"
        """
        return self._config_source.get(key, "unknown")

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (for testing)."""
        cls._instance = None
