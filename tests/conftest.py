"""Shared fixtures: an in-memory modem standing in for a serial port.

FakeTransport implements the byte-level surface AtReader and AtWriter use
(read, write, in_waiting, open, close, is_connected). Tests feed modem
output with feed(), or register canned replies that are fed as soon as the
matching frame is written.
"""

from typing import Callable, Dict, List, Optional
import threading

import pytest

from atlink.core.at_channel import AtChannel
from atlink.core.at_reader import AtReader
from atlink.core.at_writer import AtWriter
from atlink.core.exceptions import SerialPortError


class FakeTransport:
    """In-memory serial port.

    Example:
        >>> transport = FakeTransport()
        >>> transport.set_response('AT+CSQ', b'\\r\\n+CSQ: 10,99\\r\\n\\r\\nOK\\r\\n')
    """

    def __init__(self, port: str = 'FAKE', poll_interval: float = 0.01):
        self.port = port
        self.poll_interval = poll_interval
        self.writes: List[bytes] = []
        self.open_count = 0
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._is_open = False
        self._responses: Dict[bytes, bytes] = {}
        self._handler: Optional[Callable[[bytes], Optional[bytes]]] = None

    # Test helpers

    def feed(self, data: bytes) -> None:
        """Make bytes available to the reader, as if sent by the modem."""
        with self._cond:
            self._buffer.extend(data)
            self._cond.notify_all()

    def set_response(self, frame, reply: bytes) -> None:
        """Feed ``reply`` whenever ``frame`` is written.

        A str frame is treated as a command and gets the CR terminator.
        """
        if isinstance(frame, str):
            frame = frame.encode('utf-8') + b'\r'
        self._responses[frame] = reply

    def set_handler(self, handler: Callable[[bytes], Optional[bytes]]) -> None:
        """Call ``handler(frame)`` on each write; a returned value is fed."""
        self._handler = handler

    @property
    def written(self) -> bytes:
        return b''.join(self.writes)

    # Transport surface

    def open(self) -> None:
        with self._cond:
            self._is_open = True
            self.open_count += 1

    def close(self) -> None:
        with self._cond:
            self._is_open = False
            self._cond.notify_all()

    def is_connected(self) -> bool:
        return self._is_open

    def write(self, data: bytes) -> int:
        if not self._is_open:
            raise SerialPortError("Cannot write to closed port", self.port, None)
        self.writes.append(bytes(data))

        reply = self._responses.get(bytes(data))
        if reply is None and self._handler is not None:
            reply = self._handler(bytes(data))
        if reply:
            self.feed(reply)
        return len(data)

    def read(self, size: int = 1) -> bytes:
        with self._cond:
            if not self._is_open:
                raise SerialPortError("Cannot read from closed port", self.port, None)
            if not self._buffer:
                self._cond.wait(self.poll_interval)
            if not self._is_open:
                raise SerialPortError("Cannot read from closed port", self.port, None)

            chunk = bytes(self._buffer[:size])
            del self._buffer[:size]
            return chunk

    def in_waiting(self) -> int:
        with self._cond:
            return len(self._buffer)


@pytest.fixture
def transport():
    """Closed FakeTransport; AtChannel.open() opens it."""
    return FakeTransport()


@pytest.fixture
def open_transport(transport):
    transport.open()
    return transport


@pytest.fixture
def channel(transport):
    """Open AtChannel over a FakeTransport, closed after the test."""
    at_channel = AtChannel(
        AtReader(transport),
        AtWriter(transport),
        transport=transport,
        default_timeout=2.0
    )
    at_channel.open()
    yield at_channel
    at_channel.close()
