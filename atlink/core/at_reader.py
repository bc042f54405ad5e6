"""Line framing on top of a byte transport.

AtReader turns the byte stream coming from the modem into lines. Bytes are
consumed one at a time because modems may deliver them singly; a line ends
at CRLF (stripped) or at the ``"> "`` data prompt (kept, since the prompt is
never followed by CRLF).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging
import threading
import time

from atlink.core.exceptions import SerialPortError

logger = logging.getLogger(__name__)


EOL_SEQUENCE = b'\r\n'
PROMPT_SEQUENCE = b'> '
PROMPT_LINE = PROMPT_SEQUENCE.decode('ascii')


class ReadStatus(Enum):
    """Outcome of a line read."""
    LINE = "line"
    MALFORMED = "malformed"
    END_OF_STREAM = "end_of_stream"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ReadResult:
    """Result of AtReader.read_line().

    Attributes:
        status: How the read ended
        text: Decoded line (lossy for MALFORMED, None otherwise when no line)
        raw: Raw bytes of the line without CRLF
    """
    status: ReadStatus
    text: Optional[str] = None
    raw: bytes = b''

    @property
    def is_line(self) -> bool:
        return self.status in (ReadStatus.LINE, ReadStatus.MALFORMED)


_END_OF_STREAM = ReadResult(ReadStatus.END_OF_STREAM)
_CANCELLED = ReadResult(ReadStatus.CANCELLED)


class AtReader:
    """Reads AT response lines from a byte transport.

    The transport must provide ``read(size)`` returning at most ``size``
    bytes after waiting no longer than a short poll interval (empty bytes
    when nothing arrived), and ``in_waiting()``. SerialHandler satisfies
    this. A transport that raises SerialPortError, or that is no longer
    connected, is treated as end of stream.
    """

    def __init__(self, transport):
        self.transport = transport

    def read_line(self,
                  cancel: Optional[threading.Event] = None,
                  deadline: Optional[float] = None) -> ReadResult:
        """Read one line terminated by CRLF or the data prompt.

        Args:
            cancel: Event that aborts the read when set
            deadline: time.monotonic() value after which the read aborts

        Returns:
            ReadResult; CANCELLED when ``cancel`` was set or ``deadline``
            passed before the line completed
        """
        return self._read(cancel, deadline, detect_prompt=True)

    def read_single_line(self,
                         cancel: Optional[threading.Event] = None,
                         deadline: Optional[float] = None) -> ReadResult:
        """Read one CRLF-terminated line, without prompt detection."""
        return self._read(cancel, deadline, detect_prompt=False)

    def read_bytes(self, count: int, deadline: Optional[float] = None) -> bytes:
        """Read ``count`` raw bytes, ignoring line framing.

        Returns:
            The bytes read; shorter than ``count`` when the deadline passed
            or the stream ended first
        """
        data = bytearray()
        while len(data) < count:
            if deadline is not None and time.monotonic() >= deadline:
                break
            try:
                chunk = self.transport.read(count - len(data))
            except SerialPortError as e:
                logger.debug(f"Raw read ended: {e}")
                break
            data.extend(chunk)
        return bytes(data)

    def available_count(self) -> int:
        """Number of bytes waiting in the transport."""
        try:
            return self.transport.in_waiting()
        except SerialPortError:
            return 0

    def drain(self) -> int:
        """Discard bytes currently buffered in the transport (best effort).

        Returns:
            Number of bytes discarded
        """
        available = self.available_count()
        if available <= 0:
            return 0

        try:
            discarded = len(self.transport.read(available))
        except SerialPortError as e:
            logger.debug(f"Drain ended: {e}")
            return 0

        logger.debug(f"Discarded {discarded} stale bytes")
        return discarded

    def _read(self,
              cancel: Optional[threading.Event],
              deadline: Optional[float],
              detect_prompt: bool) -> ReadResult:
        buffer = bytearray()

        while True:
            if cancel is not None and cancel.is_set():
                return _CANCELLED
            if deadline is not None and time.monotonic() >= deadline:
                return _CANCELLED

            try:
                byte = self.transport.read(1)
            except SerialPortError as e:
                logger.debug(f"Line read ended: {e}")
                return _END_OF_STREAM

            if not byte:
                continue

            buffer.extend(byte)

            if buffer.endswith(EOL_SEQUENCE):
                return self._decode(bytes(buffer[:-2]))
            if detect_prompt and buffer.endswith(PROMPT_SEQUENCE):
                return self._decode(bytes(buffer))

    @staticmethod
    def _decode(raw: bytes) -> ReadResult:
        try:
            return ReadResult(ReadStatus.LINE, raw.decode('utf-8'), raw)
        except UnicodeDecodeError:
            return ReadResult(
                ReadStatus.MALFORMED,
                raw.decode('utf-8', errors='replace'),
                raw
            )
