"""
Control/status channel between a front end and the sequence controller.

Commands flow in through a FIFO that the sequencer drains at its checkpoints.
Events flow out through an append-only stream that keeps emission order; it
can be consumed by polling (``drain``) or by subscribing a listener that is
called synchronously on the emitting thread.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from loguru import logger

from models import EngineState, RunConfig, StepResult


# Commands -------------------------------------------------------------------

@dataclass(frozen=True)
class Start:
    config: RunConfig


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class EmergencyStop:
    reason: str = "user"


ControlCommand = Union[Start, Stop, EmergencyStop]


# Events ---------------------------------------------------------------------

@dataclass(frozen=True)
class LogMessage:
    message: str
    level: str = "INFO"


@dataclass(frozen=True)
class IterationStarted:
    iteration: int


@dataclass(frozen=True)
class StepCompleted:
    result: StepResult


@dataclass(frozen=True)
class WaitProgress:
    step_index: int
    elapsed: float
    total: float

    @property
    def remaining(self) -> float:
        return max(0.0, self.total - self.elapsed)


@dataclass(frozen=True)
class Completed:
    iterations: int
    duration: float


@dataclass(frozen=True)
class ErrorReported:
    message: str


@dataclass(frozen=True)
class StateChanged:
    state: EngineState


EngineEvent = Union[
    LogMessage,
    IterationStarted,
    StepCompleted,
    WaitProgress,
    Completed,
    ErrorReported,
    StateChanged,
]

EventListener = Callable[[EngineEvent], None]


class ControlChannel:
    """Thread-safe FIFO of commands addressed to the sequencer."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[ControlCommand]" = queue.Queue()

    def send(self, command: ControlCommand) -> None:
        self._queue.put(command)

    def poll(self) -> List[ControlCommand]:
        """Return every pending command without blocking."""
        commands: List[ControlCommand] = []
        while True:
            try:
                commands.append(self._queue.get_nowait())
            except queue.Empty:
                return commands

    def clear(self) -> int:
        """Discard pending commands; returns how many were dropped."""
        return len(self.poll())


class EventStream:
    """Ordered, append-only stream of engine events."""

    def __init__(self, max_buffered: Optional[int] = None) -> None:
        self._buffer: "queue.Queue[EngineEvent]" = queue.Queue(maxsize=max_buffered or 0)
        self._listeners: List[EventListener] = []
        self._lock = threading.Lock()
        self._put_lock = threading.Lock()

    def subscribe(self, listener: EventListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, event: EngineEvent) -> None:
        """Append an event and hand it to every listener in subscription order."""
        # Producers are serialized so the slot freed by a drop stays free.
        with self._put_lock:
            try:
                self._buffer.put_nowait(event)
            except queue.Full:
                # A consumer that never polls must not stall the sequencer.
                self._drop_oldest()
                self._buffer.put_nowait(event)

        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            self._safe_invoke(listener, event)

    def drain(self, max_items: Optional[int] = None) -> List[EngineEvent]:
        """Return buffered events in emission order without blocking."""
        events: List[EngineEvent] = []
        while max_items is None or len(events) < max_items:
            try:
                events.append(self._buffer.get_nowait())
            except queue.Empty:
                break
        return events

    def _drop_oldest(self) -> None:
        try:
            self._buffer.get_nowait()
        except queue.Empty:
            pass

    @staticmethod
    def _safe_invoke(listener: EventListener, event: EngineEvent) -> None:
        try:
            listener(event)
        except Exception as exc:
            logger.warning("Event listener {!r} failed: {}", listener, exc)
