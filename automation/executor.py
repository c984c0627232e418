"""
Step executor: performs one primitive action with bounded retries.

Action failures never escape as exceptions; they end up in the returned
StepResult so the controller can decide whether to continue.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from models import ClickPoint, StepResult

from .driver import DriverError, InputDriver


LogFn = Callable[[str, str], None]  # (level, message)
SleepFn = Callable[[float], None]
AbortFn = Callable[[], bool]

ABORTED = "aborted"


class StepExecutor:
    """Runs click and focus+type actions against an InputDriver."""

    def __init__(
        self,
        driver: Optional[InputDriver],
        *,
        dry_run: bool = False,
        retry_backoff: float = 0.5,
        dry_run_delay: float = 0.05,
        sleep: Optional[SleepFn] = None,
        should_abort: Optional[AbortFn] = None,
        log: Optional[LogFn] = None,
    ) -> None:
        if driver is None and not dry_run:
            raise ValueError("An input driver is required unless dry_run is enabled")
        self._driver = driver
        self._dry_run = dry_run
        self._retry_backoff = max(0.0, retry_backoff)
        self._dry_run_delay = max(0.0, dry_run_delay)
        self._sleep = sleep or time.sleep
        self._should_abort = should_abort or (lambda: False)
        self._log = log or (lambda level, msg: None)

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def click_point(self, point: ClickPoint, max_retries: int, step_index: int = 0) -> StepResult:
        """Click ``point``; up to ``max_retries + 1`` attempts."""
        if self._dry_run:
            self._log("INFO", f"[DRY RUN] Would click {point.name} at ({point.x}, {point.y})")
            return self._simulate(step_index, point.name)

        def attempt() -> None:
            self._driver.perform_click(point.x, point.y)

        return self._run_with_retries(step_index, point.name, max_retries, attempt)

    def type_text(self, point: ClickPoint, text: str, max_retries: int, step_index: int = 0) -> StepResult:
        """
        Focus the field at ``point`` and type ``text`` into it.

        Each attempt repeats both the focus click and the whole text, so a
        partially typed value is overwritten by the retry instead of being
        completed.
        """
        if self._dry_run:
            self._log("INFO", f"[DRY RUN] Would type '{text}' into {point.name} at ({point.x}, {point.y})")
            return self._simulate(step_index, point.name)

        def attempt() -> None:
            self._driver.perform_click(point.x, point.y)
            self._driver.type_text(text)

        return self._run_with_retries(step_index, point.name, max_retries, attempt)

    def _run_with_retries(
        self,
        step_index: int,
        name: str,
        max_retries: int,
        attempt: Callable[[], None],
    ) -> StepResult:
        total_attempts = max(0, int(max_retries)) + 1
        last_error: Optional[str] = None
        attempts_used = 0

        for attempt_no in range(1, total_attempts + 1):
            if self._should_abort():
                return StepResult(step_index, name, False, attempts_used, last_error or ABORTED)

            attempts_used = attempt_no
            self._log("DEBUG", f"[{name}] Attempt {attempt_no}/{total_attempts}")
            try:
                attempt()
            except DriverError as e:
                last_error = str(e)
                self._log(
                    "WARNING",
                    f"Step {step_index} [{name}] attempt {attempt_no}/{total_attempts} failed: {last_error}",
                )
                if attempt_no < total_attempts and self._retry_backoff > 0:
                    self._sleep(self._retry_backoff)
                continue

            return StepResult(step_index, name, True, attempts_used)

        self._log("ERROR", f"Step {step_index} [{name}] failed after {attempts_used} attempts: {last_error}")
        return StepResult(step_index, name, False, attempts_used, last_error)

    def _simulate(self, step_index: int, name: str) -> StepResult:
        if self._dry_run_delay > 0:
            self._sleep(self._dry_run_delay)
        return StepResult(step_index, name, True, 1)
