"""Tests for automation.session — SessionStore."""
import time

from automation.session import SessionStore
from models import EngineState


class TestSessionStore:
    def test_starts_idle(self):
        store = SessionStore()
        snap = store.snapshot()
        assert snap.state == EngineState.IDLE
        assert not snap.running
        assert store.elapsed() == 0.0

    def test_begin_publishes_running(self):
        store = SessionStore()
        store.begin()
        snap = store.snapshot()
        assert snap.running
        assert snap.iteration == 0
        assert snap.started_at is not None

    def test_update_replaces_snapshot(self):
        store = SessionStore()
        store.begin()
        before = store.snapshot()
        store.update(iteration=2, step=5)
        after = store.snapshot()
        assert (after.iteration, after.step) == (2, 5)
        # Old snapshots are never mutated
        assert (before.iteration, before.step) == (0, 0)

    def test_elapsed_is_live_while_running(self):
        store = SessionStore()
        store.begin()
        time.sleep(0.05)
        assert store.snapshot().elapsed >= 0.05

    def test_clear(self):
        store = SessionStore()
        store.begin()
        store.update(iteration=3, last_error="x")
        store.clear()
        snap = store.snapshot()
        assert snap.state == EngineState.IDLE
        assert snap.iteration == 0
        assert snap.last_error is None
