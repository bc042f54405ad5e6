"""Default configuration values for zero-config operation."""

from atlink.config.config_models import (
    Config,
    SerialConfig,
    ChannelConfig,
    LoggingConfig,
    LogLevel
)


def get_default_config() -> Config:
    """Get default configuration.

    Default Values:
        - Serial: no port, 115200 baud, 50 ms read poll interval
        - Channel: 5 s command timeout, tracing off, 256 queued unsolicited events
        - Logging: disabled; INFO level to console when enabled
    """
    return Config(
        serial=SerialConfig(
            port=None,  # Must come from file, env or command line
            baud_rate=115200,  # Most common rate for cellular modules
            poll_interval=0.05
        ),
        channel=ChannelConfig(
            default_timeout=5.0,
            debug=False,
            unsolicited_queue_size=256
        ),
        logging=LoggingConfig(
            enabled=False,
            level=LogLevel.INFO,
            log_to_file=False,
            log_to_console=True,
            log_file_path=None,  # ~/.atlink/logs/trace.log when file logging is on
            max_file_size_mb=10,
            backup_count=5
        )
    )
