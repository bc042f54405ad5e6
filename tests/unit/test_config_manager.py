"""Unit tests for configuration loading and validation."""

import os

import pytest
import yaml

from atlink.config import ConfigManager, LogLevel
from atlink.config.config_schema import ConfigSchema
from atlink.config.defaults import get_default_config


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """No config files from the developer machine, no ATLINK_ variables."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in list(os.environ):
        if name.startswith("ATLINK_"):
            monkeypatch.delenv(name)
    ConfigManager.reset()
    yield
    ConfigManager.reset()


def write_config(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:
    """Test zero-config operation."""

    def test_defaults_without_file(self):
        config = ConfigManager.initialize().get_config()

        assert config == get_default_config()
        assert config.serial.port is None
        assert config.channel.default_timeout == 5.0
        assert config.logging.level == LogLevel.INFO

    def test_sources_are_default(self):
        manager = ConfigManager.initialize()

        assert manager.get_source("channel.default_timeout") == "default"
        assert manager.get_source("nonexistent.key") == "unknown"
        assert manager.config_path is None

    def test_to_dict_uses_enum_values(self):
        assert get_default_config().to_dict()["logging"]["level"] == "INFO"


class TestFileLoading:
    """Test YAML file loading."""

    def test_explicit_path(self, tmp_path):
        path = write_config(tmp_path / "modem.yaml", {
            "serial": {"port": "/dev/ttyUSB2", "baud_rate": 9600},
            "channel": {"default_timeout": 30, "debug": True},
            "logging": {"enabled": True, "level": "DEBUG"},
        })

        manager = ConfigManager.initialize(path)
        config = manager.get_config()

        assert config.serial.port == "/dev/ttyUSB2"
        assert config.serial.baud_rate == 9600
        assert config.serial.poll_interval == 0.05
        assert config.channel.default_timeout == 30
        assert config.channel.debug is True
        assert config.logging.level == LogLevel.DEBUG
        assert manager.get_source("serial.port") == "file"
        assert manager.get_source("serial.poll_interval") == "default"
        assert manager.config_path == path

    def test_search_in_working_directory(self, tmp_path):
        write_config(tmp_path / "atlink.yaml", {"serial": {"port": "COM3"}})

        assert ConfigManager.initialize().get_config().serial.port == "COM3"

    def test_search_in_home_directory(self, tmp_path):
        (tmp_path / ".atlink").mkdir()
        write_config(tmp_path / ".atlink" / "config.yaml", {"serial": {"port": "COM7"}})

        assert ConfigManager.initialize().get_config().serial.port == "COM7"

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager.initialize(tmp_path / "missing.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert ConfigManager.initialize(path).get_config() == get_default_config()

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")

        with pytest.raises(ValueError):
            ConfigManager.initialize(path)

    def test_malformed_yaml_rejected(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("serial: [unclosed\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            ConfigManager.initialize(path)

    def test_invalid_values_rejected(self, tmp_path):
        path = write_config(tmp_path / "bad.yaml", {
            "serial": {"baud_rate": 12345},
            "channel": {"default_timeout": 0},
        })

        with pytest.raises(ValueError) as exc_info:
            ConfigManager.initialize(path)

        message = str(exc_info.value)
        assert "baud_rate" in message
        assert "default_timeout" in message

    def test_skip_validation(self, tmp_path):
        path = write_config(tmp_path / "bad.yaml", {"serial": {"baud_rate": 12345}})

        config = ConfigManager.initialize(path, skip_validation=True).get_config()

        assert config.serial.baud_rate == 12345


class TestEnvironmentOverrides:
    """Test ATLINK_<SECTION>_<KEY> overrides."""

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = write_config(tmp_path / "modem.yaml", {"serial": {"port": "COM3"}})
        monkeypatch.setenv("ATLINK_SERIAL_PORT", "/dev/ttyACM0")
        monkeypatch.setenv("ATLINK_CHANNEL_DEFAULT_TIMEOUT", "12.5")
        monkeypatch.setenv("ATLINK_CHANNEL_DEBUG", "yes")
        monkeypatch.setenv("ATLINK_CHANNEL_UNSOLICITED_QUEUE_SIZE", "64")

        manager = ConfigManager.initialize(path)
        config = manager.get_config()

        assert config.serial.port == "/dev/ttyACM0"
        assert config.channel.default_timeout == 12.5
        assert config.channel.debug is True
        assert config.channel.unsolicited_queue_size == 64
        assert manager.get_source("serial.port") == "env"

    def test_unknown_env_key_fails_validation(self, monkeypatch):
        monkeypatch.setenv("ATLINK_SERIAL_SPEED", "9600")

        with pytest.raises(ValueError):
            ConfigManager.initialize()

    @pytest.mark.parametrize("raw,parsed", [
        ("true", True), ("Off", False), ("42", 42), ("0.5", 0.5), ("COM3", "COM3"),
    ])
    def test_parse_env_value(self, raw, parsed):
        assert ConfigManager._parse_env_value(raw) == parsed


class TestSingleton:
    """Test singleton access."""

    def test_instance_before_initialize(self):
        with pytest.raises(RuntimeError):
            ConfigManager.instance()

    def test_instance_after_initialize(self):
        manager = ConfigManager.initialize()

        assert ConfigManager.instance() is manager

    def test_direct_construction_rejected(self):
        ConfigManager.initialize()

        with pytest.raises(RuntimeError):
            ConfigManager()


class TestConfigSchema:
    """Test schema validation messages."""

    def test_valid_default(self):
        assert ConfigSchema.validate_config(get_default_config().to_dict()) == (True, [])

    def test_unknown_section_rejected(self):
        valid, _ = ConfigSchema.validate_config({"modem": {"vendor": "quectel"}})

        assert valid is False

    def test_type_error_message(self):
        _, errors = ConfigSchema.validate_config({"channel": {"debug": "sometimes"}})

        assert errors == [
            "Section 'channel', field 'debug': Expected type boolean, got str (value: sometimes)"
        ]

    def test_unknown_field_message(self):
        _, errors = ConfigSchema.validate_config({"serial": {"port": "COM3", "speed": 1}})

        assert errors == ["Section 'serial': Unknown fields ['speed'] not allowed"]
