"""JSON Schema validation for atlink configuration."""

from typing import List, Tuple, Dict, Any
import jsonschema
from jsonschema import Draft7Validator


class ConfigSchema:
    """Configuration schema validator using JSON Schema Draft 7.

    Example:
        >>> is_valid, errors = ConfigSchema.validate_config(config_dict)
        >>> if not is_valid:
        ...     for error in errors:
        ...         print(error)
    """

    VALID_BAUD_RATES = [9600, 19200, 38400, 57600, 115200, 230400, 460800, 921600]

    @staticmethod
    def get_schema() -> Dict[str, Any]:
        return {
            "$schema": "http://json-schema.org/draft-07/schema#",
            "title": "atlink configuration",
            "type": "object",
            "properties": {
                "serial": {
                    "type": "object",
                    "properties": {
                        "port": {
                            "type": ["string", "null"],
                            "minLength": 1
                        },
                        "baud_rate": {
                            "type": "integer",
                            "enum": ConfigSchema.VALID_BAUD_RATES
                        },
                        "poll_interval": {
                            "type": "number",
                            "exclusiveMinimum": 0,
                            "maximum": 1
                        }
                    },
                    "additionalProperties": False
                },
                "channel": {
                    "type": "object",
                    "properties": {
                        "default_timeout": {
                            "type": "number",
                            "exclusiveMinimum": 0,
                            "maximum": 600
                        },
                        "debug": {
                            "type": "boolean"
                        },
                        "unsolicited_queue_size": {
                            "type": "integer",
                            "minimum": 1,
                            "maximum": 100000
                        }
                    },
                    "additionalProperties": False
                },
                "logging": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "level": {
                            "type": "string",
                            "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]
                        },
                        "log_to_file": {"type": "boolean"},
                        "log_to_console": {"type": "boolean"},
                        "log_file_path": {"type": ["string", "null"]},
                        "max_file_size_mb": {
                            "type": "integer",
                            "minimum": 1,
                            "maximum": 1000
                        },
                        "backup_count": {
                            "type": "integer",
                            "minimum": 0,
                            "maximum": 100
                        }
                    },
                    "additionalProperties": False
                }
            },
            "additionalProperties": False
        }

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> Tuple[bool, List[str]]:
        """Validate a configuration dictionary.

        Args:
            config: Configuration dictionary to validate

        Returns:
            (is_valid, error_messages)

        Example:
            >>> ConfigSchema.validate_config({"serial": {"baud_rate": 9600}})
            (True, [])
            >>> ConfigSchema.validate_config({"serial": {"baud_rate": 12345}})[0]
            False
        """
        validator = Draft7Validator(ConfigSchema.get_schema())
        errors = [
            ConfigSchema._format_error(error)
            for error in sorted(validator.iter_errors(config), key=lambda e: list(e.path))
        ]
        return len(errors) == 0, errors

    @staticmethod
    def _format_error(error: jsonschema.exceptions.ValidationError) -> str:
        """Format a validation error as "Section 's', field 'f': message"."""
        path_parts = list(error.path)
        if len(path_parts) == 0:
            section, field = "root", "configuration"
        elif len(path_parts) == 1:
            section, field = path_parts[0], "section"
        else:
            section = path_parts[0]
            field = ".".join(str(p) for p in path_parts[1:])

        if error.validator == "type":
            return (f"Section '{section}', field '{field}': Expected type "
                    f"{error.validator_value}, got {type(error.instance).__name__} "
                    f"(value: {error.instance})")
        elif error.validator == "enum":
            return (f"Section '{section}', field '{field}': Expected one of "
                    f"{error.validator_value}, got {error.instance}")
        elif error.validator in ("minimum", "exclusiveMinimum"):
            return (f"Section '{section}', field '{field}': Value must be "
                    f"{'>=' if error.validator == 'minimum' else '>'} "
                    f"{error.validator_value}, got {error.instance}")
        elif error.validator == "maximum":
            return (f"Section '{section}', field '{field}': Value must be <= "
                    f"{error.validator_value}, got {error.instance}")
        elif error.validator == "additionalProperties":
            extra = set(error.instance.keys()) - set(error.schema.get('properties', {}).keys())
            return f"Section '{section}': Unknown fields {sorted(extra)} not allowed"

        return f"Section '{section}', field '{field}': {error.message}"
