"""Serial port transport for AT channels.

This module wraps pyserial with the byte-level primitives the line reader
and writer need: bounded single reads, raw writes, buffered-byte counts and
input flushing, plus cross-platform port discovery.
"""

from dataclasses import dataclass
from typing import List, Optional, TYPE_CHECKING
import threading
import time

import serial
from serial.tools import list_ports

from atlink.core.exceptions import (
    SerialPortError,
    SerialPortBusyError,
    ConnectionTimeoutError
)

# Avoid circular import for type hints
if TYPE_CHECKING:
    from atlink.logging.communication_logger import CommunicationLogger


DEFAULT_BAUD_RATE = 115200
DEFAULT_POLL_INTERVAL = 0.05  # seconds


@dataclass
class PortInfo:
    """Serial port information from discovery.

    Attributes:
        device: Port device path (e.g., '/dev/ttyUSB0', 'COM3')
        description: Human-readable port description
        hwid: Hardware identifier (USB VID:PID, etc.)
    """
    device: str
    description: str
    hwid: str


class SerialHandler:
    """Manages serial port connection lifecycle and raw byte I/O.

    Reads are bounded by ``poll_interval`` so a reader blocked on the port
    wakes up regularly and can observe cancellation. Writes are guarded by
    a lock; reads are not, since a channel has exactly one reader thread.

    Example:
        >>> handler = SerialHandler('/dev/ttyUSB0', baud_rate=115200)
        >>> handler.open()
        >>> handler.write(b'AT\\r')
        >>> handler.read(1)
        >>> handler.close()
    """

    def __init__(self,
                 port: str,
                 baud_rate: int = DEFAULT_BAUD_RATE,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 logger: Optional['CommunicationLogger'] = None,
                 **kwargs):
        """Initialize handler with port configuration.

        Args:
            port: Serial port device path
            baud_rate: Baud rate (default 115200)
            poll_interval: Upper bound in seconds for a single blocking read
            logger: Optional CommunicationLogger for port events
            **kwargs: Additional arguments passed to serial.Serial
        """
        self.port = port
        self.baud_rate = baud_rate
        self.poll_interval = poll_interval
        self.logger = logger
        self.kwargs = kwargs
        self._serial: Optional[serial.Serial] = None
        self._lock = threading.Lock()
        self._open_time: Optional[float] = None

    def open(self) -> None:
        """Open the port with ``poll_interval`` as the pyserial read timeout.

        Raises:
            SerialPortError: Port missing, permission denied or other failure
            SerialPortBusyError: Port held by another process
            ConnectionTimeoutError: Driver timed out opening the port
        """
        with self._lock:
            if self._serial is not None and self._serial.is_open:
                return
            try:
                self._serial = serial.Serial(
                    port=self.port,
                    baudrate=self.baud_rate,
                    timeout=self.poll_interval,
                    **self.kwargs
                )
            except serial.SerialException as e:
                failure = self._open_failure(e)
            else:
                failure = None
                self._open_time = time.time()

        if failure is not None:
            if self.logger:
                self.logger.log_error(
                    source="SerialHandler",
                    error=str(failure),
                    details={"port": self.port, "error_type": type(failure.os_error).__name__}
                )
            raise failure

        if self.logger:
            self.logger.log_port_event(
                event="Port opened",
                port=self.port,
                details={"baud_rate": self.baud_rate, "poll_interval": self.poll_interval, **self.kwargs}
            )

    def _open_failure(self, error: serial.SerialException) -> SerialPortError:
        """Map a pyserial open failure onto the exception hierarchy."""
        text = str(error).lower()
        if 'permission denied' in text or 'access denied' in text:
            return SerialPortError(f"Permission denied accessing port {self.port}", self.port, error)
        if 'busy' in text or 'in use' in text:
            return SerialPortBusyError(f"Port {self.port} is already in use", self.port, error)
        if 'timeout' in text:
            return ConnectionTimeoutError(f"Timeout opening port {self.port}", self.port, error)
        return SerialPortError(f"Failed to open port {self.port}: {error}", self.port, error)

    def close(self) -> None:
        """Close the port. Does nothing when it is not open."""
        with self._lock:
            port = self._serial
            if port is None or not port.is_open:
                return
            opened_at, self._open_time = self._open_time, None
            try:
                port.close()
            except serial.SerialException as e:
                close_error: Optional[Exception] = e
            else:
                close_error = None

        if not self.logger:
            return
        if close_error is not None:
            self.logger.log_error(
                source="SerialHandler",
                error=f"Error closing port: {close_error}",
                details={"port": self.port}
            )
        else:
            self.logger.log_port_event(
                event="Port closed",
                port=self.port,
                details={"session_duration_seconds": time.time() - opened_at} if opened_at else None
            )

    def write(self, data: bytes) -> int:
        """Write bytes verbatim to the serial port.

        Args:
            data: Bytes to write, already framed by the caller

        Returns:
            Number of bytes written

        Raises:
            SerialPortError: Port not open or write failed
        """
        with self._lock:
            if self._serial is None or not self._serial.is_open:
                raise SerialPortError(
                    "Cannot write to closed port",
                    self.port,
                    None
                )

            try:
                bytes_written = self._serial.write(data)
                self._serial.flush()
                return bytes_written
            except serial.SerialException as e:
                raise SerialPortError(
                    f"Failed to write to port {self.port}: {e}",
                    self.port,
                    e
                )

    def read(self, size: int = 1) -> bytes:
        """Read up to ``size`` bytes, waiting at most one poll interval.

        Returns:
            Bytes read; empty when nothing arrived within the poll interval

        Raises:
            SerialPortError: Port not open or read failed
        """
        port = self._serial
        if port is None or not port.is_open:
            raise SerialPortError(
                "Cannot read from closed port",
                self.port,
                None
            )

        try:
            return port.read(size)
        except serial.SerialException as e:
            raise SerialPortError(
                f"Failed to read from port {self.port}: {e}",
                self.port,
                e
            )

    def in_waiting(self) -> int:
        """Number of bytes buffered by the driver; 0 when the port is closed."""
        port = self._serial
        if port is None or not port.is_open:
            return 0

        try:
            return port.in_waiting
        except serial.SerialException as e:
            raise SerialPortError(
                f"Failed to query port {self.port}: {e}",
                self.port,
                e
            )

    def is_connected(self) -> bool:
        """Check if port is currently open.

        Returns:
            True if port is open, False otherwise
        """
        with self._lock:
            return self._serial is not None and self._serial.is_open

    @staticmethod
    def discover_ports() -> List[PortInfo]:
        """Enumerate available serial ports.

        Returns:
            List of PortInfo objects with path, description, hwid

        Example:
            >>> for port in SerialHandler.discover_ports():
            ...     print(f"{port.device}: {port.description}")
            /dev/ttyUSB0: USB Serial Port
        """
        ports = []
        for port_info in list_ports.comports():
            ports.append(PortInfo(
                device=port_info.device,
                description=port_info.description or "Unknown",
                hwid=port_info.hwid or "Unknown"
            ))
        return ports

    def __enter__(self):
        """Context manager entry: open port."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit: close port."""
        self.close()
        return False

    def __repr__(self) -> str:
        status = "open" if self.is_connected() else "closed"
        return f"SerialHandler(port='{self.port}', baud={self.baud_rate}, status={status})"
