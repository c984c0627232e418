"""
Automation package: the engine that drives the fixed click cycle.

Key parts
---------
- controller: SequenceController, the 8-step state machine on its own thread
- executor:   StepExecutor, one click or focus+type with bounded retries
- watchdog:   WatchdogTimer, fires when the sequencer stops making progress
- channel:    commands in (Start/Stop/EmergencyStop), events out
- session:    SessionStore, lock-guarded snapshots of the running session
- driver:     InputDriver boundary with pyautogui and pynput backends
"""

from .channel import (
    Completed,
    ControlChannel,
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
from .controller import STEP_PLAN, SequenceController
from .driver import DriverError, InputDriver, create_driver
from .executor import StepExecutor
from .watchdog import WatchdogTimer

__all__ = [
    "Completed",
    "ControlChannel",
    "DriverError",
    "EmergencyStop",
    "ErrorReported",
    "EventStream",
    "InputDriver",
    "IterationStarted",
    "LogMessage",
    "STEP_PLAN",
    "SequenceController",
    "Start",
    "StateChanged",
    "StepCompleted",
    "StepExecutor",
    "Stop",
    "WaitProgress",
    "WatchdogTimer",
    "create_driver",
]
