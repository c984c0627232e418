"""Tests for telemetry — Telemetry."""
import re

from telemetry import Telemetry


LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}\] (.*)$")


def read_lines(path):
    return path.read_text(encoding="utf-8").splitlines()


class TestTelemetry:
    def test_writes_timestamped_lines(self, tmp_path):
        path = tmp_path / "logs" / "telemetry.log"
        telemetry = Telemetry(True, path)
        telemetry.log_event("START: 0h1m")
        telemetry.close()

        lines = read_lines(path)
        assert [LINE.match(line).group(1) for line in lines] == ["Telemetry initialized", "START: 0h1m"]

    def test_disabled_is_noop(self, tmp_path):
        path = tmp_path / "telemetry.log"
        telemetry = Telemetry(False, path)
        telemetry.log_event("ignored")
        telemetry.close()
        assert not telemetry.enabled
        assert not path.exists()

    def test_instances_do_not_share_lines(self, tmp_path):
        first = Telemetry(True, tmp_path / "a.log")
        second = Telemetry(True, tmp_path / "b.log")
        first.log_event("only in a")
        first.close()
        second.close()
        assert "only in a" not in (tmp_path / "b.log").read_text(encoding="utf-8")

    def test_close_is_idempotent(self, tmp_path):
        telemetry = Telemetry(True, tmp_path / "t.log")
        telemetry.close()
        telemetry.close()
        telemetry.log_event("after close")
        assert "after close" not in (tmp_path / "t.log").read_text(encoding="utf-8")
