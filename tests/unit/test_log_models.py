"""Unit tests for LogEntry."""

from dataclasses import FrozenInstanceError
from datetime import datetime
import json

import pytest

from atlink.logging.log_models import LogEntry


@pytest.fixture
def entry():
    return LogEntry(
        timestamp=datetime(2026, 10, 19, 10, 30, 15, 234000),
        level="WARNING",
        source="AtChannel",
        message="Received response",
        port="COM3",
        command="AT+COPS=?",
        response="Command timed out",
        status="timeout",
        execution_time=5.0
    )


class TestLogEntry:
    """Test LogEntry formatting and serialization."""

    def test_optional_fields_default_to_none(self):
        minimal = LogEntry(datetime.now(), "INFO", "AtChannel", "Sending command")

        assert minimal.port is None
        assert minimal.command is None
        assert minimal.execution_time is None

    def test_immutable(self, entry):
        with pytest.raises(FrozenInstanceError):
            entry.level = "INFO"

    def test_to_string(self, entry):
        assert entry.to_string() == (
            "2026-10-19 10:30:15.234 | WARNING | AtChannel       | Received response"
            " | CMD: AT+COPS=? | RESP: 'Command timed out' | STATUS: timeout | TIME: 5.000s"
        )

    def test_to_string_escapes_line_breaks(self):
        multi = LogEntry(datetime.now(), "INFO", "AtChannel", "Received response",
                         response="+CSQ: 10,99\nOK")

        assert "RESP: '+CSQ: 10,99\\nOK'" in multi.to_string()
        assert "\n" not in multi.to_string()

    def test_to_dict(self, entry):
        data = entry.to_dict()

        assert data["timestamp"] == "2026-10-19T10:30:15.234000"
        assert data["status"] == "timeout"

    def test_json(self, entry):
        restored = LogEntry.from_json(entry.to_json())

        assert restored == entry
        assert json.loads(entry.to_json())["command"] == "AT+COPS=?"

    def test_from_dict_accepts_datetime(self, entry):
        data = entry.to_dict()
        data["timestamp"] = entry.timestamp

        assert LogEntry.from_dict(data).timestamp == entry.timestamp
