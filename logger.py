"""
Logging for the automation tool.

Two layers:
- ``setup_logging`` configures loguru: a console sink and a size-rotated
  session log file. Every module logs through ``from loguru import logger``.
- ``StatusLogger`` keeps the short in-memory history the GUI renders and can
  export.
"""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger


APP_TITLE = "SecCam Automation"
APP_VERSION = "1.0.0"
LOG_FILE = "automation_log.txt"
MAX_LOG_SIZE = "5 MB"
MAX_LOG_BACKUPS = 3

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def _is_session_record(record) -> bool:
    return record["extra"].get("channel") is None


def setup_logging(
    log_file: Union[str, Path, None] = LOG_FILE,
    console_level: str = "INFO",
    console: bool = True,
) -> List[int]:
    """Configure loguru sinks and write the session banner; returns the handler ids."""
    logger.remove()
    handler_ids: List[int] = []

    if console:
        handler_ids.append(
            logger.add(sys.stderr, level=console_level, format=_CONSOLE_FORMAT, filter=_is_session_record)
        )

    if log_file:
        path = Path(log_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler_ids.append(
                logger.add(
                    path,
                    level="DEBUG",
                    format=_FILE_FORMAT,
                    rotation=MAX_LOG_SIZE,
                    retention=MAX_LOG_BACKUPS,
                    encoding="utf-8",
                    filter=_is_session_record,
                    catch=True,
                )
            )
        except OSError as exc:
            logger.warning("Could not open log file {}: {}", path, exc)

    logger.info("========================================")
    logger.info("{} v{}", APP_TITLE, APP_VERSION)
    logger.info("Session started")
    logger.info("========================================")
    return handler_ids


@dataclass
class LogEntry:
    """A single line of the in-memory history."""
    timestamp: datetime
    message: str
    level: str = "INFO"

    def __str__(self) -> str:
        time_str = self.timestamp.strftime("%H:%M:%S")
        return f"[{time_str}] {self.level}: {self.message}"


class StatusLogger:
    """Bounded history of status lines plus the current status text."""

    def __init__(self, max_entries: int = 500):
        """
        Initialize the history.

        Args:
            max_entries: Maximum number of entries to keep in memory
        """
        self._log_entries: List[LogEntry] = []
        self._max_entries = max_entries
        self._current_status = "Ready"
        self._lock = threading.Lock()

    def log(self, level: str, message: str) -> LogEntry:
        """Record a message at an arbitrary level and return the stored entry."""
        return self._add_entry(message, level.upper())

    def log_info(self, message: str) -> LogEntry:
        return self._add_entry(message, "INFO")

    def log_warning(self, message: str) -> LogEntry:
        return self._add_entry(message, "WARNING")

    def log_error(self, message: str) -> LogEntry:
        return self._add_entry(message, "ERROR")

    def update_status(self, status: str) -> None:
        """Replace the current status text and record it in the history."""
        self._current_status = status
        self.log_info(status)

    def get_current_status(self) -> str:
        return self._current_status

    def get_recent_logs(self, count: int = 10) -> List[LogEntry]:
        with self._lock:
            return self._log_entries[-count:]

    def get_all_logs(self) -> List[LogEntry]:
        with self._lock:
            return self._log_entries.copy()

    def clear_logs(self) -> None:
        with self._lock:
            self._log_entries.clear()

    def _add_entry(self, message: str, level: str) -> LogEntry:
        entry = LogEntry(timestamp=datetime.now(), message=message, level=level)
        with self._lock:
            self._log_entries.append(entry)
            if len(self._log_entries) > self._max_entries:
                self._log_entries = self._log_entries[-self._max_entries:]
        return entry

    def export_logs_to_file(self, filepath: Union[str, Path]) -> bool:
        """
        Export all entries to a text file.

        Returns:
            bool: True if export was successful
        """
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(f"{APP_TITLE} - Log Export\n")
                f.write(f"Generated: {datetime.now()}\n")
                f.write("=" * 50 + "\n\n")

                for entry in self.get_all_logs():
                    time_str = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
                    f.write(f"[{time_str}] {entry.level}: {entry.message}\n")
            return True
        except OSError as e:
            logger.error("Failed to export logs: {}", e)
            return False


def format_duration(seconds: Optional[float]) -> str:
    """Render seconds as H:MM:SS for status displays."""
    total = max(0, int(seconds or 0))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"
