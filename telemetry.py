"""Telemetry: timestamped event lines appended to logs/telemetry.log."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from loguru import logger


TELEMETRY_CHANNEL = "telemetry"
DEFAULT_TELEMETRY_PATH = Path("logs") / "telemetry.log"


class Telemetry:
    """Fire-and-forget event log. Disabled instances ignore every call."""

    def __init__(self, enabled: bool, path: Union[str, Path] = DEFAULT_TELEMETRY_PATH) -> None:
        self._enabled = enabled
        self._path = Path(path)
        self._handler_id: Optional[int] = None
        self._logger = logger.bind(channel=TELEMETRY_CHANNEL, sink=id(self))

        if enabled:
            self._open()
            self.log_event("Telemetry initialized")

    @property
    def enabled(self) -> bool:
        return self._enabled and self._handler_id is not None

    @property
    def path(self) -> Path:
        return self._path

    def log_event(self, event: str) -> None:
        if not self.enabled:
            return
        try:
            self._logger.info(event)
        except Exception as exc:
            logger.warning("Telemetry write failed: {}", exc)

    def close(self) -> None:
        """Flush and detach the telemetry sink."""
        if self._handler_id is None:
            return
        try:
            logger.remove(self._handler_id)
        except ValueError:
            pass
        self._handler_id = None

    def _open(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._handler_id = logger.add(
                self._path,
                level="INFO",
                format="[{time:YYYY-MM-DD HH:mm:ss.SSS}] {message}",
                filter=self._filter,
                encoding="utf-8",
                catch=True,
            )
        except OSError as exc:
            logger.warning("Telemetry disabled, cannot open {}: {}", self._path, exc)
            self._handler_id = None

    def _filter(self, record) -> bool:
        # Several Telemetry instances may coexist (tests); each sink only takes its own lines.
        return record["extra"].get("channel") == TELEMETRY_CHANNEL and record["extra"].get("sink") == id(self)
