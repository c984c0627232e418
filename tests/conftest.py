"""Shared test fixtures."""
import sys
import threading
from pathlib import Path

import pytest

# Ensure project root is on sys.path so the top-level modules import
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from automation.driver import DriverError, InputDriver  # noqa: E402
from models import DEFAULT_POINTS, RunConfig  # noqa: E402


class RecordingDriver(InputDriver):
    """Fake input backend that records calls and can fail on demand."""

    name = "recording"

    def __init__(self, fail_clicks=0, fail_types=0, always_fail=False, click_delay=0.0):
        self.clicks = []
        self.typed = []
        self.fail_clicks = fail_clicks
        self.fail_types = fail_types
        self.always_fail = always_fail
        self.click_delay = click_delay
        self._lock = threading.Lock()

    @property
    def call_count(self):
        with self._lock:
            return len(self.clicks) + len(self.typed)

    def perform_click(self, x, y):
        if self.click_delay:
            threading.Event().wait(self.click_delay)
        with self._lock:
            self.clicks.append((x, y))
            if self.always_fail:
                raise DriverError("click rejected")
            if self.fail_clicks > 0:
                self.fail_clicks -= 1
                raise DriverError("click rejected")

    def type_text(self, text):
        with self._lock:
            self.typed.append(text)
            if self.always_fail:
                raise DriverError("typing rejected")
            if self.fail_types > 0:
                self.fail_types -= 1
                raise DriverError("typing rejected")


def make_config(**overrides):
    """Fast RunConfig: no waits, no backoff, no dry-run delay."""
    values = dict(
        points=DEFAULT_POINTS,
        total_wait=0,
        step_delay=0,
        max_retries=3,
        step4_wait=0,
        retry_backoff=0,
        dry_run_delay=0,
        cycle_pause=0,
    )
    values.update(overrides)
    return RunConfig(**values)


@pytest.fixture
def driver():
    return RecordingDriver()


@pytest.fixture
def config_factory():
    return make_config
