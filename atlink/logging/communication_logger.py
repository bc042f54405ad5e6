"""Traffic logger for AT channels.

CommunicationLogger records what goes over the wire (commands, responses,
unsolicited events, port events) to any combination of an in-memory ring
buffer, stderr and a rotating file, filtered by level.
"""

from collections import deque
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence, Union
import logging
import sys

from atlink.config.config_models import LogLevel
from atlink.logging.file_handler import FileHandler
from atlink.logging.log_models import LogEntry

logger = logging.getLogger(__name__)


class CommunicationLogger:
    """Central sink for channel traffic records.

    Example:
        >>> trace = CommunicationLogger(log_level=LogLevel.DEBUG, enable_console=True)
        >>> trace.log_command(port="COM3", command="AT+CSQ")
        >>> trace.log_response(port="COM3", command="AT+CSQ", response="+CSQ: 10,99\\nOK",
        ...                    status="success", execution_time=0.04)
        >>> trace.close()
    """

    _LEVEL_PRIORITY = {
        "DEBUG": 0,
        "INFO": 1,
        "WARNING": 2,
        "ERROR": 3
    }

    def __init__(
        self,
        log_level: Union[LogLevel, str] = LogLevel.INFO,
        enable_file: bool = False,
        enable_console: bool = True,
        log_file_path: Optional[str] = None,
        max_file_size_mb: int = 10,
        backup_count: int = 5,
        buffer_size: int = 1000
    ):
        """Set up output destinations.

        Raises:
            ValueError: If enable_file=True but log_file_path is None
        """
        self.log_level = log_level.value if isinstance(log_level, LogLevel) else log_level
        self.enable_file = enable_file
        self.enable_console = enable_console
        self.log_file_path = log_file_path

        self._lock = Lock()
        self._buffer: deque = deque(maxlen=buffer_size)

        self._file_handler: Optional[FileHandler] = None
        if self.enable_file:
            if not log_file_path:
                raise ValueError("log_file_path required when enable_file=True")
            try:
                self._file_handler = FileHandler(
                    log_file_path=log_file_path,
                    max_size_mb=max_file_size_mb,
                    backup_count=backup_count
                )
            except OSError as e:
                logger.warning(f"File logging disabled, cannot open {log_file_path}: {e}")

    def log(self, entry: LogEntry) -> None:
        """Record an entry in every enabled destination, subject to level filtering."""
        if not self._should_log(entry.level):
            return

        with self._lock:
            self._buffer.append(entry)

            if self._file_handler:
                self._file_handler.write(entry)

            if self.enable_console:
                print(entry.to_string(), file=sys.stderr)

    def _should_log(self, entry_level: str) -> bool:
        entry_priority = self._LEVEL_PRIORITY.get(entry_level, 0)
        current_priority = self._LEVEL_PRIORITY.get(self.log_level, 0)
        return entry_priority >= current_priority

    def log_command(self, port: Optional[str], command: str) -> None:
        """Log a command as it is written to the port.

        Args:
            port: Port name, if known
            command: Command text without terminator
        """
        self.log(LogEntry(
            timestamp=datetime.now(),
            level="INFO",
            source="AtChannel",
            message="Sending command",
            port=port,
            command=command
        ))

    def log_response(
        self,
        port: Optional[str],
        command: str,
        response: str,
        status: str,
        execution_time: float
    ) -> None:
        """Record a finished command; level follows the status."""
        if status == "success":
            level = "INFO"
        elif status in ("timeout", "closed"):
            level = "WARNING"
        else:
            level = "ERROR"

        self.log(LogEntry(
            timestamp=datetime.now(),
            level=level,
            source="AtChannel",
            message="Received response",
            port=port,
            command=command,
            response=response,
            status=status,
            execution_time=execution_time
        ))

    def log_unsolicited(self, port: Optional[str], lines: Sequence[str]) -> None:
        """Log an unsolicited event (one line, or header and payload)."""
        self.log(LogEntry(
            timestamp=datetime.now(),
            level="INFO",
            source="AtChannel",
            message="Unsolicited event",
            port=port,
            response='\n'.join(lines)
        ))

    def log_line(self, port: Optional[str], direction: str, data: str) -> None:
        """Record a single raw line at DEBUG ("Out" or "In")."""
        self.log(LogEntry(
            timestamp=datetime.now(),
            level="DEBUG",
            source="AtChannel",
            message=f"{direction}: {data!r}",
            port=port
        ))

    def log_port_event(
        self,
        event: str,
        port: str,
        details: Optional[Dict[str, Any]] = None,
        level: str = "INFO"
    ) -> None:
        """Log a port lifecycle event such as open or close.

        Args:
            event: Short description, e.g. "Port opened"
            port: Port name
            details: Extra context stored with the entry
            level: Log level name
        """
        self.log(LogEntry(
            timestamp=datetime.now(),
            level=level,
            source="SerialHandler",
            message=event,
            port=port,
            details=details
        ))

    def log_error(
        self,
        source: str,
        error: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.log(LogEntry(
            timestamp=datetime.now(),
            level="ERROR",
            source=source,
            message="Error occurred",
            error=error,
            details=details
        ))

    def set_level(self, level: Union[LogLevel, str]) -> None:
        self.log_level = level.value if isinstance(level, LogLevel) else level

    def get_entries(self, limit: Optional[int] = None) -> List[LogEntry]:
        """Entries in the in-memory buffer, oldest first."""
        with self._lock:
            entries = list(self._buffer)
        if limit:
            entries = entries[-limit:]
        return entries

    def clear_buffer(self) -> None:
        with self._lock:
            self._buffer.clear()

    def flush(self) -> None:
        if self._file_handler:
            self._file_handler.flush()

    def close(self) -> None:
        if self._file_handler:
            self._file_handler.close()
            self._file_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
