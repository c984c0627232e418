"""Tests for automation.watchdog — WatchdogTimer."""
import threading
import time

import pytest

from automation.watchdog import WatchdogTimer


class TestWatchdogTimer:
    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            WatchdogTimer(0, lambda: None)
        with pytest.raises(ValueError):
            WatchdogTimer(-1, lambda: None)

    def test_resets_keep_it_quiet(self):
        fired = threading.Event()
        wd = WatchdogTimer(0.3, fired.set)
        wd.arm()
        for _ in range(8):
            time.sleep(0.1)
            wd.reset()
        wd.cancel()
        assert not fired.is_set()
        assert wd.fired_count == 0

    def test_fires_exactly_once_after_silence(self):
        calls = []
        wd = WatchdogTimer(0.1, lambda: calls.append(1))
        wd.arm()
        time.sleep(0.5)
        assert calls == [1]
        assert wd.fired_count == 1
        assert not wd.armed

    def test_cancel_before_deadline_prevents_firing(self):
        fired = threading.Event()
        wd = WatchdogTimer(0.1, fired.set)
        wd.arm()
        wd.cancel()
        assert not fired.wait(0.3)

    def test_cancel_is_idempotent(self):
        wd = WatchdogTimer(0.1, lambda: None)
        wd.cancel()
        wd.arm()
        wd.cancel()
        wd.cancel()
        assert not wd.armed

    def test_rearm_after_firing(self):
        fired = []
        wd = WatchdogTimer(0.05, lambda: fired.append(1))
        wd.arm()
        time.sleep(0.25)
        wd.arm()
        time.sleep(0.25)
        assert fired == [1, 1]

    def test_arm_with_new_timeout(self):
        wd = WatchdogTimer(5, lambda: None)
        wd.arm(timeout=0.5)
        assert wd.timeout == 0.5
        assert wd.armed
        wd.cancel()

    def test_callback_error_is_contained(self):
        def boom():
            raise RuntimeError("boom")

        wd = WatchdogTimer(0.05, boom)
        wd.arm()
        time.sleep(0.25)
        assert wd.fired_count == 1
