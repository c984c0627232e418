"""Tests for automation.executor — StepExecutor."""
import pytest

from automation.executor import ABORTED, StepExecutor
from models import ClickPoint

from conftest import RecordingDriver


POINT = ClickPoint("Target", 10, 20)


class TestClick:
    def test_success_first_try(self, driver):
        executor = StepExecutor(driver, retry_backoff=0)
        result = executor.click_point(POINT, max_retries=3, step_index=1)
        assert result.succeeded
        assert result.attempts_used == 1
        assert result.step_index == 1
        assert result.name == "Target"
        assert driver.clicks == [(10, 20)]

    def test_recovers_after_transient_failures(self):
        driver = RecordingDriver(fail_clicks=2)
        executor = StepExecutor(driver, retry_backoff=0)
        result = executor.click_point(POINT, max_retries=3)
        assert result.succeeded
        assert result.attempts_used == 3

    @pytest.mark.parametrize("max_retries", [0, 1, 3])
    def test_retry_bound(self, max_retries):
        driver = RecordingDriver(always_fail=True)
        executor = StepExecutor(driver, retry_backoff=0)
        result = executor.click_point(POINT, max_retries=max_retries)
        assert not result.succeeded
        assert result.attempts_used == max_retries + 1
        assert len(driver.clicks) == max_retries + 1
        assert result.error == "click rejected"

    def test_backoff_between_attempts_only(self):
        sleeps = []
        driver = RecordingDriver(always_fail=True)
        executor = StepExecutor(driver, retry_backoff=0.5, sleep=sleeps.append)
        executor.click_point(POINT, max_retries=2)
        assert sleeps == [0.5, 0.5]

    def test_logs_failed_attempts(self):
        lines = []
        driver = RecordingDriver(fail_clicks=1)
        executor = StepExecutor(driver, retry_backoff=0, log=lambda level, msg: lines.append((level, msg)))
        executor.click_point(POINT, max_retries=1, step_index=5)
        warnings = [msg for level, msg in lines if level == "WARNING"]
        assert len(warnings) == 1
        assert "Step 5" in warnings[0]
        assert "Target" in warnings[0]
        assert "1/2" in warnings[0]


class TestTypeText:
    def test_focus_then_type(self, driver):
        executor = StepExecutor(driver, retry_backoff=0)
        result = executor.type_text(POINT, "01-02-2024", max_retries=3, step_index=2)
        assert result.succeeded
        assert driver.clicks == [(10, 20)]
        assert driver.typed == ["01-02-2024"]

    def test_retry_repeats_focus_and_whole_text(self):
        driver = RecordingDriver(fail_types=1)
        executor = StepExecutor(driver, retry_backoff=0)
        result = executor.type_text(POINT, "abc", max_retries=3)
        assert result.succeeded
        assert result.attempts_used == 2
        assert driver.clicks == [(10, 20), (10, 20)]
        assert driver.typed == ["abc", "abc"]


class TestDryRun:
    def test_no_driver_calls(self, driver):
        executor = StepExecutor(driver, dry_run=True, dry_run_delay=0)
        assert executor.click_point(POINT, 3).succeeded
        assert executor.type_text(POINT, "x", 3).succeeded
        assert driver.call_count == 0

    def test_driver_optional_in_dry_run(self):
        executor = StepExecutor(None, dry_run=True, dry_run_delay=0)
        assert executor.click_point(POINT, 0).attempts_used == 1

    def test_driver_required_otherwise(self):
        with pytest.raises(ValueError):
            StepExecutor(None)

    def test_logs_would_click(self):
        lines = []
        executor = StepExecutor(None, dry_run=True, dry_run_delay=0, log=lambda level, msg: lines.append(msg))
        executor.click_point(POINT, 0)
        assert lines == ["[DRY RUN] Would click Target at (10, 20)"]


class TestAbort:
    def test_abort_before_first_attempt(self, driver):
        executor = StepExecutor(driver, should_abort=lambda: True)
        result = executor.click_point(POINT, 3)
        assert not result.succeeded
        assert result.attempts_used == 0
        assert result.error == ABORTED
        assert driver.call_count == 0

    def test_abort_cuts_retries(self):
        driver = RecordingDriver(always_fail=True)
        checks = []

        def should_abort():
            checks.append(1)
            return len(checks) > 1

        executor = StepExecutor(driver, retry_backoff=0, should_abort=should_abort)
        result = executor.click_point(POINT, 5)
        assert not result.succeeded
        assert result.attempts_used == 1
        assert result.error == "click rejected"
