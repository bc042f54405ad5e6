"""Integration tests: AtChannel + SerialHandler + CommunicationLogger.

serial.Serial is replaced by a simulated modem that speaks the pyserial
API, so the whole stack from configuration to bytes on the wire runs
without hardware.
"""

from unittest.mock import patch
import queue
import threading

import pytest

from atlink.config import ConfigManager, LogLevel
from atlink.core import AtChannel, ResponseStatus
from atlink.logging import CommunicationLogger

pytestmark = pytest.mark.integration


class SimulatedModem:
    """Minimal modem behind the pyserial Serial API.

    Echoes commands until ATE0, answers from a script, prompts for an SMS
    PDU on AT+CMGS and accepts it on Ctrl-Z.
    """

    SCRIPT = {
        "ATE0": b"\r\nOK\r\n",
        "AT": b"\r\nOK\r\n",
        "ATI": b"\r\nQuectel\r\nEC25\r\nRevision: EC25EFAR06A06M4G\r\n\r\nOK\r\n",
        "AT+CSQ": b"\r\n+CSQ: 24,99\r\n\r\nOK\r\n",
        "AT+CGSN": b"\r\n867698041234567\r\n\r\nOK\r\n",
        "AT+CPIN?": b"\r\n+CME ERROR: 10\r\n",
    }

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.timeout = kwargs.get("timeout", 0.05)
        self.is_open = True
        self.echo = True
        self.received = bytearray()
        self._input = bytearray()
        self._output = bytearray()
        self._cond = threading.Condition()
        self._awaiting_pdu = False

    # pyserial surface

    @property
    def in_waiting(self):
        with self._cond:
            return len(self._output)

    def read(self, size=1):
        with self._cond:
            if not self._output and self.is_open:
                self._cond.wait(self.timeout)
            chunk = bytes(self._output[:size])
            del self._output[:size]
            return chunk

    def write(self, data):
        self.received.extend(data)
        for value in data:
            self._on_byte(bytes([value]))
        return len(data)

    def flush(self):
        pass

    def reset_input_buffer(self):
        with self._cond:
            self._output.clear()

    def reset_output_buffer(self):
        pass

    def close(self):
        with self._cond:
            self.is_open = False
            self._cond.notify_all()

    # Simulation

    def inject(self, data: bytes) -> None:
        with self._cond:
            self._output.extend(data)
            self._cond.notify_all()

    def _on_byte(self, byte: bytes) -> None:
        if self._awaiting_pdu:
            if byte == b"\x1a":
                self._awaiting_pdu = False
                self._input.clear()
                self.inject(b"\r\n+CMGS: 42\r\n\r\nOK\r\n")
            else:
                self._input.extend(byte)
            return

        if byte != b"\r":
            self._input.extend(byte)
            return

        command = self._input.decode()
        self._input.clear()
        if self.echo:
            self.inject(command.encode() + b"\r")
        if command == "ATE0":
            self.echo = False

        if command.startswith("AT+CMGS="):
            self._awaiting_pdu = True
            self.inject(b"\r\n> ")
        elif command == "AT+COPS=?":
            self.inject(b'\r\n+CREG: 5\r\n+COPS: (2,"Operator","Op","26201",7),,(0-4),(0-2)\r\n\r\nOK\r\n')
        else:
            self.inject(self.SCRIPT.get(command, b"\r\nERROR\r\n"))


def next_event(events, prefix, timeout=1.0):
    """Skip earlier events (such as echoes) until one starts with prefix."""
    while True:
        event = events.get(timeout=timeout)
        if event.line1.startswith(prefix):
            return event


@pytest.fixture
def modem():
    return SimulatedModem()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    path = tmp_path / "atlink.yaml"
    path.write_text(
        "serial:\n"
        "  port: /dev/ttyUSB2\n"
        "  poll_interval: 0.01\n"
        "channel:\n"
        "  default_timeout: 2\n"
        "  debug: true\n",
        encoding="utf-8"
    )
    ConfigManager.reset()
    yield path
    ConfigManager.reset()


@pytest.fixture
def channel(modem, config_file, tmp_path):
    config = ConfigManager.initialize(config_file).get_config()
    trace = CommunicationLogger(
        log_level=LogLevel.DEBUG,
        enable_file=True,
        enable_console=False,
        log_file_path=str(tmp_path / "logs" / "trace.log")
    )

    with patch("serial.Serial", return_value=modem) as serial_class:
        at_channel = AtChannel.from_config(config, logger=trace)
        at_channel.open()
        serial_class.assert_called_once_with(port="/dev/ttyUSB2", baudrate=115200, timeout=0.01)

    yield at_channel
    at_channel.close()
    trace.close()


class TestModemSession:
    """A realistic session against the simulated modem."""

    def test_echo_disabled_then_queries(self, channel):
        events = queue.Queue()
        channel.subscribe(events.put)

        assert channel.send_command("ATE0").success
        # Echo of ATE0 (ending in a bare CR) is reported as unsolicited
        assert events.get(timeout=1.0).line1 == "ATE0\r"

        info = channel.send_expect_multi_line("ATI")
        assert info.intermediates == ("Quectel", "EC25", "Revision: EC25EFAR06A06M4G")

        csq = channel.send_expect_single_line("AT+CSQ", "+CSQ:")
        assert csq.first_intermediate == "+CSQ: 24,99"

        imei = channel.send_expect_numeric("AT+CGSN")
        assert imei.first_intermediate == "867698041234567"

    def test_send_sms_pdu(self, channel, modem):
        channel.send_command("ATE0")

        response = channel.send_with_payload("AT+CMGS=23", "07911326040000F0", "+CMGS:")

        assert response.success
        assert response.first_intermediate == "+CMGS: 42"
        assert modem.received.endswith(b"AT+CMGS=23\r07911326040000F0\x1a")

    def test_error_and_unknown_commands(self, channel):
        channel.send_command("ATE0")

        pin = channel.send_expect_single_line("AT+CPIN?", "+CPIN:")
        unknown = channel.send_command("AT+BOGUS")

        assert pin.error is not None and pin.error.code == 10
        assert unknown.status == ResponseStatus.ERROR
        assert unknown.final_response == "ERROR"

    def test_unsolicited_during_long_query(self, channel):
        channel.send_command("ATE0")
        events = queue.Queue()
        channel.subscribe(events.put)

        response = channel.send_expect_multi_line("AT+COPS=?", "+COPS:")

        assert len(response.intermediates) == 1
        assert next_event(events, "+CREG:").line1 == "+CREG: 5"

    def test_incoming_sms_while_idle(self, channel, modem):
        events = queue.Queue()
        channel.subscribe(events.put)

        modem.inject(b'\r\n+CMT: "+4915112345678",,"26/10/19,10:00:00+08"\r\nSee you at 5\r\n')

        event = events.get(timeout=1.0)
        assert event.lines == ('+CMT: "+4915112345678",,"26/10/19,10:00:00+08"', "See you at 5")

    def test_traffic_written_to_log_file(self, channel, tmp_path):
        channel.send_command("ATE0")
        channel.send_expect_single_line("AT+CSQ", "+CSQ:")
        channel.logger.flush()

        content = (tmp_path / "logs" / "trace.log").read_text(encoding="utf-8")
        assert "Port opened" in content
        assert "CMD: AT+CSQ" in content
        assert "STATUS: success" in content
        assert "In: '+CSQ: 24,99'" in content

    def test_close_closes_port(self, channel, modem):
        channel.close()

        assert not modem.is_open
        assert not channel.is_running
