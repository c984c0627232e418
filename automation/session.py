"""Session state publication: one writer (the sequencer thread), many readers."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Optional

from models import EngineState, SessionState


class SessionStore:
    """
    Holds the latest immutable SessionState snapshot.

    Only the sequencer thread calls the mutating methods. Readers call
    ``snapshot()`` from any thread and always get a complete snapshot,
    never a half-updated one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current = SessionState()
        self._started_monotonic: Optional[float] = None

    def snapshot(self) -> SessionState:
        with self._lock:
            current = self._current
            started = self._started_monotonic
        if current.running and started is not None:
            return replace(current, elapsed=time.monotonic() - started)
        return current

    def begin(self) -> SessionState:
        """Publish a fresh running session."""
        with self._lock:
            self._started_monotonic = time.monotonic()
            self._current = SessionState(
                state=EngineState.RUNNING,
                iteration=0,
                step=0,
                started_at=datetime.now(),
            )
            return self._current

    def update(self, **changes) -> SessionState:
        """Publish a copy of the current snapshot with ``changes`` applied."""
        with self._lock:
            if self._started_monotonic is not None:
                changes.setdefault("elapsed", time.monotonic() - self._started_monotonic)
            self._current = replace(self._current, **changes)
            return self._current

    def elapsed(self) -> float:
        with self._lock:
            if self._started_monotonic is None:
                return 0.0
            return time.monotonic() - self._started_monotonic

    def clear(self) -> SessionState:
        """Reset to the empty idle snapshot."""
        with self._lock:
            self._started_monotonic = None
            self._current = SessionState()
            return self._current
