"""
Watchdog timer that detects a sequencer which stopped making progress.

The sequencer arms the watchdog when a run starts and resets it whenever a
step completes or a wait ticks. If neither happens within the timeout, the
callback runs once on a timer thread.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from loguru import logger


class WatchdogTimer:
    """Cancellable deadline built on ``threading.Timer``."""

    def __init__(self, timeout: float, on_timeout: Callable[[], None]) -> None:
        if timeout <= 0:
            raise ValueError("Watchdog timeout must be positive")
        self._timeout = float(timeout)
        self._on_timeout = on_timeout
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._armed = False
        self._fired_count = 0

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._armed

    @property
    def fired_count(self) -> int:
        with self._lock:
            return self._fired_count

    def arm(self, timeout: Optional[float] = None) -> None:
        """(Re)start the deadline, dropping any pending one first."""
        with self._lock:
            if timeout is not None:
                if timeout <= 0:
                    raise ValueError("Watchdog timeout must be positive")
                self._timeout = float(timeout)
            self._disarm_locked()
            self._armed = True
            generation = self._generation
            timer = threading.Timer(self._timeout, self._fire, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def reset(self) -> None:
        """Prove liveness: restart the deadline with the current timeout."""
        self.arm()

    def cancel(self) -> None:
        """Disarm. Safe to call repeatedly and after the deadline fired."""
        with self._lock:
            self._disarm_locked()

    def _disarm_locked(self) -> None:
        self._generation += 1
        self._armed = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A reset or cancel that won the lock first invalidates this deadline.
            if generation != self._generation or not self._armed:
                return
            self._armed = False
            self._timer = None
            self._fired_count += 1

        logger.error("Watchdog timeout after {:.1f}s - automation unresponsive", self._timeout)
        try:
            self._on_timeout()
        except Exception as exc:
            logger.exception("Watchdog callback failed: {}", exc)
