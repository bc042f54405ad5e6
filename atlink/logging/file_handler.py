"""Size-rotated log file output for LogEntry records."""

from pathlib import Path
from threading import Lock
from typing import Optional, TextIO
import logging

from atlink.logging.log_models import LogEntry

logger = logging.getLogger(__name__)


class FileHandler:
    """Thread-safe log file writer with size-based rotation.

    When the file reaches ``max_size_mb`` it is renamed to ``<name>.1``,
    older backups shift up by one, and backups beyond ``backup_count`` are
    deleted.

    Example:
        >>> handler = FileHandler("~/.atlink/logs/trace.log", max_size_mb=10, backup_count=5)
        >>> handler.write(log_entry)
        >>> handler.close()
    """

    def __init__(self, log_file_path: str, max_size_mb: int = 10, backup_count: int = 5):
        """Create the log directory if needed and open the file for appending.

        Raises:
            OSError: If the directory cannot be created or the file cannot be opened
        """
        self.log_file_path = Path(log_file_path).expanduser().resolve()
        self.max_size_bytes = max_size_mb * 1024 * 1024
        self.backup_count = backup_count
        self._lock = Lock()
        self._is_closed = False

        self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        self._file_handle: Optional[TextIO] = self._open_file()

    def _open_file(self) -> TextIO:
        return open(self.log_file_path, mode='a', encoding='utf-8', buffering=8192)

    def write(self, entry: LogEntry) -> bool:
        """Append one entry, rotating first if the file is full.

        Returns:
            True if written, False if the handler is closed or the write failed
        """
        with self._lock:
            if self._is_closed or self._file_handle is None:
                return False

            try:
                self._rotate_if_needed()
                self._file_handle.write(entry.to_string() + '\n')
                self._file_handle.flush()
                return True
            except OSError as e:
                logger.error(f"Failed to write log entry to {self.log_file_path}: {e}")
                return False

    def _rotate_if_needed(self) -> None:
        # Caller holds self._lock
        if self._file_handle is None or self._file_handle.tell() < self.max_size_bytes:
            return

        self._file_handle.close()
        self._file_handle = None

        try:
            oldest = Path(f"{self.log_file_path}.{self.backup_count}")
            if oldest.exists():
                oldest.unlink()

            for i in range(self.backup_count - 1, 0, -1):
                src = Path(f"{self.log_file_path}.{i}")
                if src.exists():
                    src.replace(Path(f"{self.log_file_path}.{i + 1}"))

            if self.backup_count > 0:
                self.log_file_path.replace(Path(f"{self.log_file_path}.1"))
            else:
                self.log_file_path.unlink()
        except OSError as e:
            logger.warning(f"Log rotation failed for {self.log_file_path}: {e}")
        finally:
            self._file_handle = self._open_file()

    def flush(self) -> None:
        with self._lock:
            if self._file_handle is not None and not self._is_closed:
                self._file_handle.flush()

    def close(self) -> None:
        """Flush and close the file. Safe to call multiple times."""
        with self._lock:
            if self._is_closed:
                return
            self._is_closed = True
            if self._file_handle is not None:
                self._file_handle.close()
                self._file_handle = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
