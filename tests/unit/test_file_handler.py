"""Unit tests for FileHandler with log rotation."""

from datetime import datetime
from pathlib import Path
import shutil
import tempfile
import threading

import pytest

from atlink.logging.file_handler import FileHandler
from atlink.logging.log_models import LogEntry


def make_entry(message: str = "Received response") -> LogEntry:
    return LogEntry(
        timestamp=datetime.now(),
        level="INFO",
        source="AtChannel",
        message=message,
        command="AT+CSQ"
    )


class TestFileHandler:
    """Test suite for FileHandler class."""

    @pytest.fixture
    def temp_dir(self):
        temp_path = Path(tempfile.mkdtemp())
        yield temp_path
        if temp_path.exists():
            shutil.rmtree(temp_path)

    def test_creation_makes_directory(self, temp_dir):
        log_file = temp_dir / "logs" / "trace.log"
        handler = FileHandler(str(log_file), max_size_mb=10, backup_count=5)

        assert handler.log_file_path == log_file.resolve()
        assert handler.max_size_bytes == 10 * 1024 * 1024
        assert log_file.exists()

        handler.close()

    def test_write_entry(self, temp_dir):
        log_file = temp_dir / "trace.log"

        with FileHandler(str(log_file)) as handler:
            assert handler.write(make_entry()) is True

        content = log_file.read_text(encoding="utf-8")
        assert "AtChannel" in content
        assert "CMD: AT+CSQ" in content

    def test_rotation(self, temp_dir):
        log_file = temp_dir / "trace.log"
        handler = FileHandler(str(log_file), max_size_mb=0.001, backup_count=3)

        for _ in range(10):
            handler.write(make_entry("X" * 500))
        handler.close()

        assert Path(f"{log_file}.1").exists()

    def test_backup_count_limit(self, temp_dir):
        log_file = temp_dir / "trace.log"
        handler = FileHandler(str(log_file), max_size_mb=0.001, backup_count=2)

        for _ in range(20):
            handler.write(make_entry("X" * 500))
        handler.close()

        assert Path(f"{log_file}.2").exists()
        assert not Path(f"{log_file}.3").exists()

    def test_close_idempotent(self, temp_dir):
        handler = FileHandler(str(temp_dir / "trace.log"))

        handler.close()
        handler.close()

    def test_write_after_close(self, temp_dir):
        handler = FileHandler(str(temp_dir / "trace.log"))
        handler.close()

        assert handler.write(make_entry()) is False

    def test_thread_safety(self, temp_dir):
        log_file = temp_dir / "trace.log"
        handler = FileHandler(str(log_file))

        def write_entries():
            for i in range(10):
                handler.write(make_entry(f"Thread message {i}"))

        threads = [threading.Thread(target=write_entries) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        handler.close()

        lines = log_file.read_text(encoding="utf-8").strip().split("\n")
        assert len(lines) == 50
