"""Tests for automation.controller — SequenceController."""
import time
from datetime import datetime
from types import SimpleNamespace

from automation import (
    Completed,
    EmergencyStop,
    ErrorReported,
    IterationStarted,
    LogMessage,
    SequenceController,
    StateChanged,
    StepCompleted,
    WaitProgress,
)
from automation import controller as controller_module
from automation.controller import STEP_PLAN
from models import EngineState, FailurePolicy

from conftest import RecordingDriver, make_config


def of_type(events, cls):
    return [e for e in events if isinstance(e, cls)]


def run_to_idle(controller, config, timeout=5.0):
    assert controller.start(config)
    assert controller.wait_until_idle(timeout)
    return controller.events.drain()


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class FakeTelemetry:
    def __init__(self):
        self.lines = []

    def log_event(self, text):
        self.lines.append(text)


class FakeScreenshots:
    def __init__(self):
        self.calls = []

    def capture(self, step_name, suffix):
        self.calls.append((step_name, suffix))
        return None


class TestStepPlan:
    def test_eight_steps_in_order(self):
        assert [spec.index for spec in STEP_PLAN] == list(range(1, 9))

    def test_action_steps_use_points_in_order(self):
        assert [spec.point_index for spec in STEP_PLAN if spec.is_action] == [0, 1, 2, 3, 4, 5]


class TestScenario:
    def test_two_iterations_then_stop(self):
        controller = SequenceController(None)
        seen = []

        def stop_after_two_cycles(event):
            if isinstance(event, StepCompleted):
                seen.append(event)
                if len(seen) == 16:
                    controller.stop()

        controller.events.subscribe(stop_after_two_cycles)
        config = make_config(max_retries=3, step_delay=0, total_wait=0, dry_run=True)
        events = run_to_idle(controller, config)

        assert len(of_type(events, StepCompleted)) == 16
        assert len(of_type(events, IterationStarted)) == 2
        completed = of_type(events, Completed)
        assert len(completed) == 1
        assert completed[0].iterations == 2

    def test_step_results_in_plan_order(self):
        controller = SequenceController(None)
        events = run_to_idle(controller, make_config(dry_run=True, max_iterations=1))
        results = [e.result for e in of_type(events, StepCompleted)]
        assert [r.step_index for r in results] == list(range(1, 9))
        assert all(r.succeeded for r in results)
        assert results[3].attempts_used == 0
        assert results[5].name == "Long wait"


class TestStartStop:
    def test_start_then_stop_goes_idle_quickly(self, driver):
        controller = SequenceController(driver)
        assert controller.start(make_config(step_delay=10, total_wait=3600))
        controller.stop()
        started = time.monotonic()
        assert controller.wait_until_idle(2.0)
        assert time.monotonic() - started < 1.5
        events = controller.events.drain()
        assert of_type(events, Completed)[-1].iterations == 0
        assert not controller.is_running()

    def test_stop_reports_stopping_state(self):
        controller = SequenceController(None)
        assert controller.start(make_config(dry_run=True, total_wait=3600))
        assert wait_for(lambda: controller.status().step == 6)
        controller.stop()
        assert controller.wait_until_idle(2.0)
        states = [e.state for e in of_type(controller.events.drain(), StateChanged)]
        assert states == [EngineState.RUNNING, EngineState.STOPPING, EngineState.IDLE]

    def test_stop_during_retry_lets_the_click_finish(self):
        driver = RecordingDriver(click_delay=0.3, fail_clicks=1)
        controller = SequenceController(driver)
        assert controller.start(make_config(max_retries=3, step_delay=10))
        assert wait_for(lambda: controller.status().step == 1)
        time.sleep(0.1)
        controller.stop()
        assert controller.wait_until_idle(3.0)

        events = controller.events.drain()
        assert len(driver.clicks) == 2
        first = of_type(events, StepCompleted)[0].result
        assert first.step_index == 1
        assert first.succeeded
        assert first.attempts_used == 2
        assert of_type(events, Completed)[-1].iterations == 0
        assert not of_type(events, ErrorReported)

    def test_second_start_rejected(self):
        controller = SequenceController(None)
        config = make_config(dry_run=True, total_wait=3600)
        assert controller.start(config)
        assert not controller.start(config)
        controller.emergency_stop()
        assert controller.wait_until_idle(2.0)
        messages = [e.message for e in of_type(controller.events.drain(), LogMessage)]
        assert "Already running" in messages

    def test_requires_driver_unless_dry_run(self):
        controller = SequenceController(None)
        assert not controller.start(make_config())
        assert not controller.is_running()
        errors = [e for e in of_type(controller.events.drain(), LogMessage) if e.level == "ERROR"]
        assert errors

    def test_stale_commands_do_not_leak_into_next_run(self):
        controller = SequenceController(None)
        controller.stop()
        events = run_to_idle(controller, make_config(dry_run=True, max_iterations=1))
        assert of_type(events, Completed)[0].iterations == 1

    def test_restart_after_completion(self):
        controller = SequenceController(None)
        run_to_idle(controller, make_config(dry_run=True, max_iterations=1))
        events = run_to_idle(controller, make_config(dry_run=True, max_iterations=1))
        assert of_type(events, Completed)[0].iterations == 1


class TestEmergencyStop:
    def test_during_long_wait_idle_within_a_second(self):
        controller = SequenceController(None)
        assert controller.start(make_config(dry_run=True, total_wait=11 * 3600))
        assert wait_for(lambda: controller.status().step == 6)

        controller.submit(EmergencyStop("hotkey"))
        started = time.monotonic()
        assert controller.wait_until_idle(1.0)
        assert time.monotonic() - started <= 1.0

        events = controller.events.drain()
        assert not of_type(events, Completed)
        errors = of_type(events, ErrorReported)
        assert errors and "hotkey" in errors[-1].message

    def test_cuts_retry_backoff(self):
        driver = RecordingDriver(always_fail=True)
        controller = SequenceController(driver)
        assert controller.start(make_config(max_retries=10, retry_backoff=5))
        assert wait_for(lambda: len(driver.clicks) >= 1)
        controller.emergency_stop()
        assert controller.wait_until_idle(1.0)
        assert len(driver.clicks) < 11

    def test_while_click_blocks_idle_within_a_second(self):
        driver = RecordingDriver(click_delay=4.0)
        controller = SequenceController(driver)
        assert controller.start(make_config())
        assert wait_for(lambda: controller.status().step == 1)
        time.sleep(0.2)

        controller.emergency_stop("user")
        assert controller.wait_until_idle(1.0)
        assert not controller.is_running()
        errors = of_type(controller.events.drain(), ErrorReported)
        assert errors and "user" in errors[-1].message

    def test_shutdown_stops_running_sequence(self):
        controller = SequenceController(None)
        assert controller.start(make_config(dry_run=True, total_wait=3600))
        assert controller.shutdown(timeout=2.0)
        assert not controller.is_running()

    def test_shutdown_when_idle(self):
        assert SequenceController(None).shutdown()


class TestWatchdog:
    def test_hung_driver_goes_idle_while_click_blocks(self):
        driver = RecordingDriver(click_delay=4.0)
        controller = SequenceController(driver)
        assert controller.start(make_config(max_retries=0, watchdog_timeout=0.3))

        assert controller.wait_until_idle(1.5)
        events = controller.events.drain()
        errors = of_type(events, ErrorReported)
        assert errors
        assert "watchdog timeout" in errors[-1].message
        assert not of_type(events, Completed)
        assert of_type(events, StateChanged)[-1].state == EngineState.IDLE
        assert controller.status().state == EngineState.IDLE
        assert not controller.is_running()
        # The click is still blocked in the driver
        assert driver.clicks == []

    def test_new_start_allowed_while_old_click_blocks(self):
        driver = RecordingDriver(click_delay=4.0)
        controller = SequenceController(driver)
        assert controller.start(make_config(max_retries=0, watchdog_timeout=0.3))
        assert controller.wait_until_idle(1.5)
        controller.events.drain()

        events = run_to_idle(controller, make_config(dry_run=True, max_iterations=1))
        assert of_type(events, Completed)[0].iterations == 1

    def test_blocked_thread_output_is_discarded(self):
        driver = RecordingDriver(click_delay=0.5)
        controller = SequenceController(driver)
        assert controller.start(make_config(max_retries=0, watchdog_timeout=0.1))
        assert controller.wait_until_idle(1.0)
        controller.events.drain()

        # The click returns after the run was closed; nothing more may surface.
        assert wait_for(lambda: len(driver.clicks) == 1)
        time.sleep(0.3)
        assert controller.events.drain() == []
        assert controller.status().state == EngineState.IDLE

    def test_long_wait_does_not_trip_watchdog(self):
        controller = SequenceController(None)
        events = run_to_idle(
            controller,
            make_config(dry_run=True, total_wait=1.6, max_iterations=1, watchdog_timeout=1.2),
        )
        assert not of_type(events, ErrorReported)
        assert of_type(events, Completed)[0].iterations == 1


class TestIterations:
    def test_dry_run_never_touches_driver(self, driver):
        controller = SequenceController(driver)
        events = run_to_idle(controller, make_config(dry_run=True, max_iterations=2))
        assert driver.call_count == 0
        assert of_type(events, Completed)[0].iterations == 2

    def test_max_iterations_completes_on_its_own(self, driver):
        controller = SequenceController(driver)
        events = run_to_idle(controller, make_config(max_iterations=3))
        assert len(of_type(events, StepCompleted)) == 24
        assert of_type(events, Completed)[0].iterations == 3
        # 6 clicks and 1 typed date per cycle
        assert len(driver.clicks) == 18
        assert len(driver.typed) == 3

    def test_failing_driver_continues_and_counts_once(self):
        driver = RecordingDriver(always_fail=True)
        controller = SequenceController(driver)
        events = run_to_idle(controller, make_config(max_retries=1, max_iterations=2))

        results = [e.result for e in of_type(events, StepCompleted)]
        failed = [r for r in results if not r.succeeded]
        assert len(results) == 16
        assert len(failed) == 12
        assert all(r.attempts_used == 2 for r in failed)
        assert of_type(events, Completed)[0].iterations == 2

    def test_abort_iteration_skips_rest_of_cycle(self):
        # Step 1 exhausts its retries on the first cycle only.
        driver = RecordingDriver(fail_clicks=2)
        controller = SequenceController(driver)
        config = make_config(
            max_retries=1,
            max_iterations=1,
            failure_policy=FailurePolicy.ABORT_ITERATION,
        )
        events = run_to_idle(controller, config)

        assert len(of_type(events, IterationStarted)) == 2
        assert len(of_type(events, StepCompleted)) == 1 + 8
        assert of_type(events, Completed)[0].iterations == 1
        assert any("abandoning iteration" in e.message for e in of_type(events, ErrorReported))

    def test_typed_date_format(self, driver):
        controller = SequenceController(driver, now=lambda: datetime(2024, 2, 1, 9, 30))
        run_to_idle(controller, make_config(max_iterations=1))
        assert driver.typed == ["01-02-2024"]


class TestReporting:
    def test_wait_progress_each_second(self):
        controller = SequenceController(None)
        events = run_to_idle(controller, make_config(dry_run=True, step4_wait=1.2, max_iterations=1))
        progress = [e for e in of_type(events, WaitProgress) if e.step_index == 4]
        assert len(progress) == 2
        assert progress[-1].elapsed == progress[-1].total == 1.2
        assert progress[-1].remaining == 0

    def test_clock_jump_reports_once(self, monkeypatch):
        offset = [0.0]
        monkeypatch.setattr(
            controller_module,
            "time",
            SimpleNamespace(monotonic=lambda: time.monotonic() + offset[0]),
        )
        controller = SequenceController(None)

        def suspend_after_first_tick(event):
            if isinstance(event, WaitProgress) and not offset[0]:
                offset[0] = 3.5

        controller.events.subscribe(suspend_after_first_tick)
        events = run_to_idle(controller, make_config(dry_run=True, step4_wait=6.0, max_iterations=1))
        elapsed = [e.elapsed for e in of_type(events, WaitProgress) if e.step_index == 4]
        assert elapsed[-1] == 6.0
        ticks = elapsed[:-1]
        assert all(later - earlier >= 0.9 for earlier, later in zip(ticks, ticks[1:]))
        assert len(ticks) <= 4

    def test_status_snapshot(self):
        controller = SequenceController(None)
        assert controller.status().state == EngineState.IDLE
        assert controller.start(make_config(dry_run=True, total_wait=3600))
        assert wait_for(lambda: controller.status().step == 6)
        status = controller.status()
        assert status.running
        assert status.state == EngineState.RUNNING
        assert status.started_at is not None
        controller.emergency_stop()
        assert controller.wait_until_idle(2.0)
        assert controller.status().state == EngineState.IDLE

    def test_telemetry_and_screenshots(self, driver):
        telemetry = FakeTelemetry()
        screenshots = FakeScreenshots()
        controller = SequenceController(driver, telemetry=telemetry, screenshots=screenshots)
        run_to_idle(controller, make_config(max_iterations=1))

        assert telemetry.lines[0].startswith("START:")
        assert "ITERATION: 1 complete" in telemetry.lines
        assert telemetry.lines[-1].startswith("COMPLETE:")
        assert len(screenshots.calls) == 12
        assert screenshots.calls[0] == ("step1", "before")
        assert screenshots.calls[1] == ("step1", "after")

    def test_failing_listener_does_not_stop_run(self):
        controller = SequenceController(None)

        def broken(event):
            raise RuntimeError("listener bug")

        controller.events.subscribe(broken)
        events = run_to_idle(controller, make_config(dry_run=True, max_iterations=1))
        assert of_type(events, Completed)[0].iterations == 1
