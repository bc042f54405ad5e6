"""Command framing on top of a byte transport."""

from typing import Union
import threading


COMMAND_TERMINATOR = b'\r'
PAYLOAD_TERMINATOR = b'\x1a'  # Ctrl-Z


class AtWriter:
    """Writes AT commands and payloads to a byte transport.

    The transport must provide ``write(data: bytes)``. The read loop (for
    payload uploads) and caller threads (for commands and raw sends) share
    one writer, so every frame is written under a lock to keep frames whole.
    """

    def __init__(self, transport, encoding: str = 'utf-8'):
        self.transport = transport
        self.encoding = encoding
        self._lock = threading.Lock()

    def write_command(self, text: str) -> None:
        """Write command text followed by a single carriage return."""
        self._write(text.encode(self.encoding) + COMMAND_TERMINATOR)

    def write_payload_and_terminator(self, payload: Union[str, bytes]) -> None:
        """Write a payload followed by the 0x1A terminator.

        Used once the modem has sent the "> " prompt, e.g. the PDU of
        AT+CMGS.
        """
        if isinstance(payload, str):
            payload = payload.encode(self.encoding)
        self._write(bytes(payload) + PAYLOAD_TERMINATOR)

    def write_raw(self, data: bytes) -> None:
        """Write bytes verbatim, without framing."""
        self._write(bytes(data))

    def _write(self, frame: bytes) -> None:
        with self._lock:
            self.transport.write(frame)
