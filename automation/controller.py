"""
Sequence controller: runs the fixed 8-step cycle on a dedicated thread.

State machine
-------------
IDLE --Start--> RUNNING --Stop--> STOPPING --action done--> IDLE
RUNNING/STOPPING --EmergencyStop / watchdog timeout--> IDLE (immediately)

Cycle
-----
1. click point 1
2. click the date field and type today's date (DD-MM-YYYY)
3. click point 3
4. short wait (step4_wait)
5. click point 4
6. long main wait (total_wait) with a progress event every second
7. click point 5
8. click point 6

Stop is applied at checkpoints: before every step and on every slice of every
wait, and it lets the in-flight click/type finish (including its retries).
EmergencyStop and a watchdog timeout end the run at once, from the thread that
raises them: the engine reports the error and goes Idle even while the
sequencer thread is still blocked inside the input driver. That thread's later
output is discarded.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from models import EngineState, FailurePolicy, RunConfig, SessionState, StepResult

from .channel import (
    Completed,
    ControlChannel,
    ControlCommand,
    EmergencyStop,
    ErrorReported,
    EventStream,
    IterationStarted,
    LogMessage,
    Start,
    StateChanged,
    StepCompleted,
    Stop,
    WaitProgress,
)
from .driver import InputDriver
from .executor import StepExecutor
from .session import SessionStore
from .watchdog import WatchdogTimer


DATE_FORMAT = "%d-%m-%Y"
SLEEP_SLICE_SECONDS = 0.1
PROGRESS_INTERVAL_SECONDS = 1.0
JOIN_TIMEOUT_SECONDS = 3.0
WATCHDOG_REASON = "watchdog timeout"


class StepKind(Enum):
    CLICK = "click"
    TYPE_DATE = "type_date"
    SHORT_WAIT = "short_wait"
    LONG_WAIT = "long_wait"


@dataclass(frozen=True)
class StepSpec:
    index: int
    kind: StepKind
    point_index: Optional[int] = None

    @property
    def is_action(self) -> bool:
        return self.point_index is not None


STEP_PLAN = (
    StepSpec(1, StepKind.CLICK, 0),
    StepSpec(2, StepKind.TYPE_DATE, 1),
    StepSpec(3, StepKind.CLICK, 2),
    StepSpec(4, StepKind.SHORT_WAIT),
    StepSpec(5, StepKind.CLICK, 3),
    StepSpec(6, StepKind.LONG_WAIT),
    StepSpec(7, StepKind.CLICK, 4),
    StepSpec(8, StepKind.CLICK, 5),
)


class _RunStopped(Exception):
    pass


class _RunAborted(Exception):
    pass


class _Run:
    """
    Everything that belongs to one Start..Idle cycle.

    A run is closed exactly once, either by its sequencer thread when the loop
    ends or by an emergency stop from any other thread. After that the
    sequencer thread may still be blocked inside the driver; whatever it does
    once the call returns is discarded (no events, no session updates).
    """

    def __init__(self, config: RunConfig) -> None:
        self.config = config
        self.session = SessionStore()
        self.lock = threading.RLock()
        self.closed = threading.Event()
        self.stop_requested = False
        self.iterations_done = 0
        self.watchdog: Optional[WatchdogTimer] = None
        self.thread: Optional[threading.Thread] = None


class SequenceController:
    """Owns the automation loop, its watchdog and the published session state."""

    def __init__(
        self,
        driver: Optional[InputDriver] = None,
        *,
        channel: Optional[ControlChannel] = None,
        events: Optional[EventStream] = None,
        telemetry=None,
        screenshots=None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._driver = driver
        self._commands = channel or ControlChannel()
        self._events = events or EventStream()
        self._telemetry = telemetry
        self._screenshots = screenshots
        self._now = now

        self._wake = threading.Event()
        self._lock = threading.Lock()
        self._run: Optional[_Run] = None
        self._idle = threading.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------
    @property
    def events(self) -> EventStream:
        return self._events

    @property
    def commands(self) -> ControlChannel:
        return self._commands

    def status(self) -> SessionState:
        """Consistent snapshot of the current session."""
        with self._lock:
            run = self._run
        if run is None or run.closed.is_set():
            return SessionState()
        return run.session.snapshot()

    def is_running(self) -> bool:
        with self._lock:
            return self._run is not None

    def submit(self, command: ControlCommand) -> bool:
        """
        Hand a command to the engine.

        Start is handled right away (it spawns the sequencer thread). Stop is
        queued and takes effect at the next checkpoint. EmergencyStop is queued
        too, but it also ends the run at once: the engine is Idle when this
        returns, even if the sequencer thread is stuck in the input driver.
        """
        if isinstance(command, Start):
            return self._start(command.config)
        self._commands.send(command)
        self._wake.set()
        if isinstance(command, EmergencyStop):
            with self._lock:
                run = self._run
            if run is not None:
                self._abort(run, command.reason)
        return True

    def start(self, config: RunConfig) -> bool:
        return self.submit(Start(config))

    def stop(self) -> None:
        self.submit(Stop())

    def emergency_stop(self, reason: str = "user") -> None:
        self.submit(EmergencyStop(reason))

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the engine is Idle; returns False on timeout."""
        return self._idle.wait(timeout)

    def shutdown(self, timeout: float = JOIN_TIMEOUT_SECONDS) -> bool:
        """Best-effort emergency stop before process teardown."""
        with self._lock:
            run = self._run
        if run is None:
            return True
        logger.warning("Shutdown while running - forcing emergency stop")
        self.emergency_stop("shutdown")
        stopped = self.wait_until_idle(timeout)

        if run.thread is not None:
            run.thread.join(timeout)
            if run.thread.is_alive():
                logger.error("Sequencer thread still blocked in the input driver after {:.1f}s", timeout)
        return stopped

    # ------------------------------------------------------------------
    # Start / finish
    # ------------------------------------------------------------------
    def _start(self, config: RunConfig) -> bool:
        dropped = 0
        with self._lock:
            busy = self._run is not None
            missing_driver = self._driver is None and not config.dry_run
            if not busy and not missing_driver:
                dropped = self._commands.clear()
                self._wake.clear()
                run = _Run(config)
                run.session.begin()
                run.thread = threading.Thread(
                    target=self._worker,
                    args=(run,),
                    name="sequencer",
                    daemon=True,
                )
                self._run = run
                self._idle.clear()
                run.thread.start()

        # Listeners may call back into the controller; notify outside the lock.
        if busy:
            self._notify("WARNING", "Already running")
            return False
        if missing_driver:
            self._notify("ERROR", "No input driver available; enable dry-run to rehearse the sequence")
            return False
        if dropped:
            logger.debug("Discarded {} stale command(s) before start", dropped)
        return True

    def _worker(self, run: _Run) -> None:
        config = run.config
        failure: Optional[str] = None

        self._emit(run, StateChanged(EngineState.RUNNING))

        hours, minutes = divmod(int(config.total_wait) // 60, 60)
        self._log(
            run,
            "INFO",
            f"Automation started: wait {hours}h {minutes}m, step delay {config.step_delay:g}s, "
            f"retries {config.max_retries}, dry_run={config.dry_run}",
        )
        self._record_telemetry(
            f"START: {hours}h{minutes}m, retries={config.max_retries}, dry_run={config.dry_run}", run
        )

        run.watchdog = WatchdogTimer(
            config.effective_watchdog_timeout(),
            lambda: self._on_watchdog_timeout(run),
        )
        executor = StepExecutor(
            self._driver,
            dry_run=config.dry_run,
            retry_backoff=config.retry_backoff,
            dry_run_delay=config.dry_run_delay,
            sleep=run.closed.wait,
            should_abort=run.closed.is_set,
            log=lambda level, message: self._log(run, level, message),
        )

        run.watchdog.arm()
        try:
            self._run_loop(run, executor)
        except (_RunStopped, _RunAborted):
            pass
        except Exception as e:
            logger.exception("Automation loop crashed")
            failure = f"Automation error: {e}"
        finally:
            run.watchdog.cancel()

        self._finish(run, failure)

    def _finish(self, run: _Run, failure: Optional[str]) -> None:
        if not self._close(run):
            # An emergency stop already published the end of this run.
            logger.debug("Sequencer thread of an aborted run exited")
            return

        duration = run.session.elapsed()
        iterations = run.iterations_done

        if failure is not None:
            logger.error(failure)
            self._events.emit(ErrorReported(failure))
            self._record_telemetry(f"ERROR: {failure}, iterations={iterations}")
        else:
            self._notify("INFO", f"Automation stopped. Completed iterations: {iterations}")
            self._events.emit(Completed(iterations, duration))
            self._record_telemetry(f"COMPLETE: duration={duration:.1f}s, iterations={iterations}")

        self._release(run)

    def _abort(self, run: _Run, reason: str) -> None:
        """End ``run`` immediately, from whichever thread asks."""
        if not self._close(run):
            return
        self._wake.set()
        if run.watchdog is not None:
            run.watchdog.cancel()

        duration = run.session.elapsed()
        iterations = run.iterations_done
        self._notify("ERROR", f"EMERGENCY STOP TRIGGERED ({reason})")

        message = f"Emergency stop ({reason}) after {iterations} completed iteration(s)"
        logger.error(message)
        self._events.emit(ErrorReported(message))
        self._record_telemetry(
            f"EMERGENCY: reason={reason}, duration={duration:.1f}s, iterations={iterations}"
        )
        self._release(run)

    def _close(self, run: _Run) -> bool:
        """Mark ``run`` closed; True only for the caller that closed it."""
        with run.lock:
            if run.closed.is_set():
                return False
            run.closed.set()
            return True

    def _release(self, run: _Run) -> None:
        run.session.clear()
        self._events.emit(StateChanged(EngineState.IDLE))
        with self._lock:
            if self._run is run:
                self._run = None
                self._idle.set()

    # ------------------------------------------------------------------
    # Sequence
    # ------------------------------------------------------------------
    def _run_loop(self, run: _Run, executor: StepExecutor) -> None:
        config = run.config
        while True:
            self._checkpoint(run)
            if not config.is_infinite_mode() and run.iterations_done >= config.max_iterations:
                self._log(run, "INFO", f"Reached {config.max_iterations} iteration(s)")
                return

            iteration = run.iterations_done + 1
            self._emit(run, IterationStarted(iteration))
            self._log(run, "INFO", f"===== Iteration {iteration} =====")

            if self._run_iteration(run, executor):
                run.iterations_done += 1
                run.session.update(iteration=run.iterations_done, step=0)
                self._log(run, "INFO", f"===== Iteration {iteration} complete =====")
                self._record_telemetry(f"ITERATION: {iteration} complete", run)
            else:
                run.session.update(step=0)
                self._log(run, "WARNING", f"===== Iteration {iteration} abandoned =====")

            self._wait(run, config.cycle_pause)

    def _run_iteration(self, run: _Run, executor: StepExecutor) -> bool:
        """Run all steps once; False when the cycle was abandoned."""
        config = run.config
        for spec in STEP_PLAN:
            self._checkpoint(run)
            run.session.update(step=spec.index)

            result = self._run_step(run, spec, executor)
            if run.closed.is_set():
                raise _RunAborted()

            run.watchdog.reset()
            self._emit(run, StepCompleted(result))

            if not result.succeeded:
                run.session.update(last_error=result.error)
                self._record_telemetry(
                    f"STEP FAILED: step={result.step_index}, point={result.name}, "
                    f"attempts={result.attempts_used}, error={result.error}",
                    run,
                )
                if config.failure_policy == FailurePolicy.ABORT_ITERATION:
                    self._report_error(
                        run,
                        f"Step {result.step_index} [{result.name}] failed after "
                        f"{result.attempts_used} attempt(s); abandoning iteration",
                    )
                    return False

            # The cycle pause follows the last step instead of a step delay.
            if spec.is_action and spec is not STEP_PLAN[-1]:
                self._wait(run, config.step_delay)
        return True

    def _run_step(self, run: _Run, spec: StepSpec, executor: StepExecutor) -> StepResult:
        config = run.config
        if spec.kind == StepKind.SHORT_WAIT:
            self._log(run, "INFO", f"Step {spec.index}: Waiting {config.step4_wait:g} seconds")
            self._wait(run, config.step4_wait, step_index=spec.index, report_progress=True)
            return StepResult(spec.index, "Short wait", True, 0)

        if spec.kind == StepKind.LONG_WAIT:
            hours, minutes = divmod(int(config.total_wait) // 60, 60)
            self._log(run, "INFO", f"Step {spec.index}: Long wait {hours}h {minutes}m")
            self._wait(run, config.total_wait, step_index=spec.index, report_progress=True)
            self._log(run, "INFO", "Long wait completed")
            return StepResult(spec.index, "Long wait", True, 0)

        point = config.points[spec.point_index]
        self._capture(run, spec, point.name, "before")

        if spec.kind == StepKind.TYPE_DATE:
            date = self._now().strftime(DATE_FORMAT)
            result = executor.type_text(point, date, config.max_retries, spec.index)
            if result.succeeded:
                self._log(run, "INFO", f"Entered date: {date}")
        else:
            result = executor.click_point(point, config.max_retries, spec.index)

        if result.succeeded:
            self._capture(run, spec, point.name, "after")
        return result

    # ------------------------------------------------------------------
    # Waiting & checkpoints
    # ------------------------------------------------------------------
    def _wait(self, run: _Run, seconds: float, step_index: int = 0, report_progress: bool = False) -> None:
        """
        Sleep in short slices, draining commands on every slice.

        Raises _RunStopped / _RunAborted when the run has to end. The watchdog
        is reset once per progress interval so that long waits do not look
        like a hang.
        """
        total = max(0.0, float(seconds))
        started = time.monotonic()
        deadline = started + total
        next_tick = started + PROGRESS_INTERVAL_SECONDS
        last_reported = -1.0

        while True:
            self._checkpoint(run)
            now = time.monotonic()

            if now >= next_tick:
                run.watchdog.reset()
                if report_progress:
                    last_reported = min(now - started, total)
                    self._emit(run, WaitProgress(step_index, last_reported, total))
                    run.session.update()
                # After a suspend, report once rather than once per missed second.
                next_tick = now + PROGRESS_INTERVAL_SECONDS

            if now >= deadline:
                break

            self._wake.wait(min(SLEEP_SLICE_SECONDS, deadline - now, max(0.0, next_tick - now)))

        if report_progress and total > 0 and last_reported < total:
            self._emit(run, WaitProgress(step_index, total, total))

    def _checkpoint(self, run: _Run) -> None:
        self._drain_commands(run)
        if run.closed.is_set():
            raise _RunAborted()
        if run.stop_requested:
            raise _RunStopped()

    def _drain_commands(self, run: _Run) -> None:
        with run.lock:
            # A closed run must not eat commands meant for the next one.
            if run.closed.is_set():
                return
            self._wake.clear()
            commands = self._commands.poll()

        for command in commands:
            if isinstance(command, EmergencyStop):
                self._abort(run, command.reason)
            elif isinstance(command, Stop):
                if not run.stop_requested:
                    run.stop_requested = True
                    run.session.update(state=EngineState.STOPPING)
                    self._emit(run, StateChanged(EngineState.STOPPING))
                    self._log(run, "INFO", "Stop requested - finishing current action")
            elif isinstance(command, Start):
                self._log(run, "WARNING", "Already running")

    def _on_watchdog_timeout(self, run: _Run) -> None:
        # Timer thread. The sequencer may be stuck in the driver, so the run
        # is ended from here rather than through the command queue.
        self._abort(run, WATCHDOG_REASON)

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------
    def _emit(self, run: _Run, event) -> None:
        with run.lock:
            if run.closed.is_set():
                return
            self._events.emit(event)

    def _notify(self, level: str, message: str) -> None:
        logger.log(level, message)
        if level != "DEBUG":
            self._events.emit(LogMessage(message, level))

    def _log(self, run: _Run, level: str, message: str) -> None:
        with run.lock:
            if run.closed.is_set():
                logger.debug("After emergency stop: {}", message)
                return
            self._notify(level, message)

    def _report_error(self, run: _Run, message: str) -> None:
        with run.lock:
            if run.closed.is_set():
                return
            logger.error(message)
            run.session.update(last_error=message)
            self._events.emit(ErrorReported(message))

    def _record_telemetry(self, text: str, run: Optional[_Run] = None) -> None:
        if self._telemetry is None:
            return
        if run is not None and run.closed.is_set():
            return
        try:
            self._telemetry.log_event(text)
        except Exception as e:
            logger.warning("Telemetry failed: {}", e)

    def _capture(self, run: _Run, spec: StepSpec, point_name: str, suffix: str) -> None:
        if self._screenshots is None or run.closed.is_set():
            return
        try:
            path = self._screenshots.capture(f"step{spec.index}", suffix)
        except Exception as e:
            logger.warning("Screenshot for step {} [{}] failed: {}", spec.index, point_name, e)
            return
        if path is not None:
            logger.debug("Screenshot saved: {}", path)
