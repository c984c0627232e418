"""
Domain models for the cycle automation engine.

Plain dataclasses shared by the engine, the settings store and the GUI.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


POINT_COUNT = 6


class EngineState(Enum):
    """Lifecycle of the sequence controller."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


class FailurePolicy(Enum):
    """What the controller does after a step exhausted its retries."""
    CONTINUE = "continue"
    ABORT_ITERATION = "abort_iteration"


@dataclass(frozen=True)
class ClickPoint:
    """A named screen coordinate used as the target of a click step."""
    name: str
    x: int
    y: int

    def to_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def __str__(self) -> str:
        return f"{self.name} ({self.x}, {self.y})"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the point for JSON storage."""
        return {"name": self.name, "x": self.x, "y": self.y}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ClickPoint":
        """Create a ClickPoint from a dictionary."""
        x_raw = data.get("x", 0)
        y_raw = data.get("y", 0)
        name_raw = data.get("name")

        return ClickPoint(
            name=str(name_raw) if name_raw not in (None, "") else "Point",
            x=int(x_raw) if x_raw is not None else 0,
            y=int(y_raw) if y_raw is not None else 0,
        )


DEFAULT_POINTS: Tuple[ClickPoint, ...] = (
    ClickPoint("Step 1", 3514, 1640),
    ClickPoint("Step 2 (date field)", 1775, 596),
    ClickPoint("Step 3", 1474, 1649),
    ClickPoint("Step 5", 2875, 1640),
    ClickPoint("Step 7", 2674, 1640),
    ClickPoint("Step 8", 2066, 1100),
)


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable snapshot of everything a run needs.

    Durations are seconds. A snapshot is taken when the run starts, so edits
    made in the GUI afterwards only affect the next run.
    """
    points: Tuple[ClickPoint, ...]
    total_wait: float
    step_delay: float
    max_retries: int
    step4_wait: float
    dry_run: bool = False
    failure_policy: FailurePolicy = FailurePolicy.CONTINUE
    retry_backoff: float = 0.5
    dry_run_delay: float = 0.05
    cycle_pause: float = 0.0
    max_iterations: int = 0
    watchdog_timeout: Optional[float] = None

    def __post_init__(self):
        """Validate configuration parameters."""
        object.__setattr__(self, "points", tuple(self.points))

        if len(self.points) != POINT_COUNT:
            raise ValueError(f"Exactly {POINT_COUNT} click points are required, got {len(self.points)}")

        for label, value in (
            ("total_wait", self.total_wait),
            ("step_delay", self.step_delay),
            ("step4_wait", self.step4_wait),
            ("retry_backoff", self.retry_backoff),
            ("dry_run_delay", self.dry_run_delay),
            ("cycle_pause", self.cycle_pause),
        ):
            if value < 0:
                raise ValueError(f"{label} cannot be negative")

        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        if self.max_iterations < 0:
            raise ValueError("max_iterations cannot be negative")

        if self.watchdog_timeout is not None and self.watchdog_timeout <= 0:
            raise ValueError("watchdog_timeout must be positive")

    def effective_watchdog_timeout(self) -> float:
        """Watchdog window in seconds; derived from the retry budget unless set explicitly."""
        if self.watchdog_timeout is not None:
            return float(self.watchdog_timeout)
        return float(max(self.max_retries * 3, 30))

    def is_infinite_mode(self) -> bool:
        """Check if the run should loop until stopped."""
        return self.max_iterations == 0


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step, produced by the executor and consumed by the controller."""
    step_index: int
    name: str
    succeeded: bool
    attempts_used: int
    error: Optional[str] = None


@dataclass(frozen=True)
class SessionState:
    """Read-only snapshot of the controller's session counters."""
    state: EngineState = EngineState.IDLE
    iteration: int = 0
    step: int = 0
    started_at: Optional[datetime] = None
    elapsed: float = 0.0
    last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.state != EngineState.IDLE


_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def _parse_bool(value: Any, field: str) -> bool:
    """Strict flag parsing: a hand-edited "false" must not read as True."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"{field} must be a boolean, got {value!r}")


@dataclass
class ApplicationSettings:
    """Persisted application preferences."""

    total_hours: int = 11
    total_minutes: int = 30
    step_delay: float = 10.0
    max_retries: int = 3
    step4_wait: float = 10.0
    cycle_pause: float = 5.0
    dry_run: bool = False
    failure_policy: FailurePolicy = FailurePolicy.CONTINUE
    emergency_hotkey: str = "Delete"
    telemetry_enabled: bool = False
    screenshots_enabled: bool = False

    @property
    def total_wait(self) -> float:
        """Length of the long main wait in seconds."""
        return float(self.total_hours * 3600 + self.total_minutes * 60)

    def to_run_config(
        self,
        points: Sequence[ClickPoint],
        dry_run: Optional[bool] = None,
        max_iterations: int = 0,
    ) -> RunConfig:
        """Build the immutable snapshot handed to the controller on Start."""
        return RunConfig(
            points=tuple(points),
            total_wait=self.total_wait,
            step_delay=float(self.step_delay),
            max_retries=int(self.max_retries),
            step4_wait=float(self.step4_wait),
            dry_run=self.dry_run if dry_run is None else dry_run,
            failure_policy=self.failure_policy,
            cycle_pause=float(self.cycle_pause),
            max_iterations=max_iterations,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize settings to primitive types for JSON storage."""
        return {
            "total_hours": self.total_hours,
            "total_minutes": self.total_minutes,
            "step_delay": self.step_delay,
            "max_retries": self.max_retries,
            "step4_wait": self.step4_wait,
            "cycle_pause": self.cycle_pause,
            "dry_run": self.dry_run,
            "failure_policy": self.failure_policy.value,
            "emergency_hotkey": self.emergency_hotkey,
            "telemetry_enabled": self.telemetry_enabled,
            "screenshots_enabled": self.screenshots_enabled,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ApplicationSettings":
        """Create settings instance from JSON dictionary."""
        defaults = ApplicationSettings()
        return ApplicationSettings(
            total_hours=max(0, int(data.get("total_hours", defaults.total_hours) or 0)),
            total_minutes=max(0, int(data.get("total_minutes", defaults.total_minutes) or 0)),
            step_delay=max(0.0, float(data.get("step_delay", defaults.step_delay) or 0.0)),
            max_retries=max(0, int(data.get("max_retries", defaults.max_retries) or 0)),
            step4_wait=max(0.0, float(data.get("step4_wait", defaults.step4_wait) or 0.0)),
            cycle_pause=max(0.0, float(data.get("cycle_pause", defaults.cycle_pause) or 0.0)),
            dry_run=_parse_bool(data.get("dry_run", False), "dry_run"),
            failure_policy=FailurePolicy(str(data.get("failure_policy", FailurePolicy.CONTINUE.value))),
            emergency_hotkey=str(data.get("emergency_hotkey", defaults.emergency_hotkey) or defaults.emergency_hotkey),
            telemetry_enabled=_parse_bool(data.get("telemetry_enabled", False), "telemetry_enabled"),
            screenshots_enabled=_parse_bool(data.get("screenshots_enabled", False), "screenshots_enabled"),
        )


def points_to_list(points: Sequence[ClickPoint]) -> List[Dict[str, Any]]:
    """Serialize an ordered point sequence for JSON storage."""
    return [point.to_dict() for point in points]


def points_from_list(raw: Any) -> List[ClickPoint]:
    """Parse a JSON list of point dictionaries, skipping malformed entries."""
    points: List[ClickPoint] = []
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, dict):
                points.append(ClickPoint.from_dict(item))
    return points
