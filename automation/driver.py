"""
Input driver boundary: one simulated click or one text injection per call.

Backends
--------
- PyAutoGUIDriver: moves the cursor to the target and clicks through pyautogui.
- PynputDriver:    uses pynput mouse/keyboard controllers, typing per character.

Both libraries are imported lazily so the engine can be imported (and tested)
on machines without a display. Every backend failure is reported as a
DriverError; the engine treats all of them the same way.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple

from loguru import logger


class DriverError(Exception):
    pass


class InputDriver(ABC):
    """Performs primitive input actions against whatever window has focus."""

    name = "driver"

    @abstractmethod
    def perform_click(self, x: int, y: int) -> None:
        """Left-click at absolute screen coordinates; raise DriverError on failure."""

    @abstractmethod
    def type_text(self, text: str) -> None:
        """Type literal text into the focused field; raise DriverError on failure."""


class PyAutoGUIDriver(InputDriver):
    name = "pyautogui"

    MOVE_SETTLE_SECONDS = 0.05
    TYPE_INTERVAL_SECONDS = 0.01

    def __init__(self) -> None:
        self._pyautogui = _get_pyautogui()
        if self._pyautogui is None:
            raise DriverError("pyautogui backend not available")
        # Move mouse to a screen corner to abort pyautogui calls
        self._pyautogui.FAILSAFE = True
        self._pyautogui.PAUSE = 0.0

    def perform_click(self, x: int, y: int) -> None:
        try:
            self._pyautogui.moveTo(int(x), int(y))
            time.sleep(self.MOVE_SETTLE_SECONDS)
            self._pyautogui.click(button="left")
        except Exception as e:
            raise DriverError(f"Mouse click at ({x}, {y}) failed: {e}") from e

    def type_text(self, text: str) -> None:
        try:
            self._pyautogui.write(text, interval=self.TYPE_INTERVAL_SECONDS)
        except Exception as e:
            raise DriverError(f"Type failed: {e}") from e


class PynputDriver(InputDriver):
    name = "pynput"

    MOVE_SETTLE_SECONDS = 0.05
    TYPE_INTERVAL_SECONDS = 0.01

    def __init__(self) -> None:
        mouse_cls, button_mod = _get_pynput_mouse()
        keyboard_cls = _get_pynput_keyboard()
        if mouse_cls is None or button_mod is None or keyboard_cls is None:
            raise DriverError("pynput backend not available")
        try:
            self._mouse = mouse_cls()
            self._keyboard = keyboard_cls()
        except Exception as e:
            raise DriverError(f"pynput controllers could not be created: {e}") from e
        self._button = button_mod.left

    def perform_click(self, x: int, y: int) -> None:
        try:
            # This will move the cursor (OS limitation for targeted clicks)
            self._mouse.position = (int(x), int(y))
            time.sleep(self.MOVE_SETTLE_SECONDS)
            self._mouse.click(self._button)
        except Exception as e:
            raise DriverError(f"Mouse click at ({x}, {y}) failed: {e}") from e

    def type_text(self, text: str) -> None:
        try:
            for ch in text:
                self._keyboard.press(ch)
                self._keyboard.release(ch)
                time.sleep(self.TYPE_INTERVAL_SECONDS)
        except Exception as e:
            raise DriverError(f"Type failed: {e}") from e


_BACKENDS = {
    PyAutoGUIDriver.name: PyAutoGUIDriver,
    PynputDriver.name: PynputDriver,
}


def create_driver(preferred: str = PyAutoGUIDriver.name) -> InputDriver:
    """Instantiate the preferred backend, falling back to the other one."""
    if preferred not in _BACKENDS:
        raise DriverError(f"Unknown input backend: {preferred}")

    order = [preferred] + [name for name in _BACKENDS if name != preferred]
    errors = []
    for name in order:
        try:
            driver = _BACKENDS[name]()
        except DriverError as e:
            logger.warning("Input backend {} unavailable: {}", name, e)
            errors.append(f"{name}: {e}")
            continue
        logger.info("Using input backend: {}", name)
        return driver
    raise DriverError("No input backend available (" + "; ".join(errors) + ")")


def _get_pyautogui() -> Optional[Any]:
    """Import pyautogui lazily; it needs a display at import time."""
    try:
        import pyautogui  # type: ignore
        return pyautogui
    except Exception:
        return None


def _get_pynput_mouse() -> Tuple[Optional[Any], Optional[Any]]:
    """Import pynput.mouse lazily and return (MouseControllerClass, ButtonModule)."""
    try:
        from pynput.mouse import Controller as MouseController, Button as MouseButton  # type: ignore
        return MouseController, MouseButton
    except Exception:
        return None, None


def _get_pynput_keyboard() -> Optional[Any]:
    """Import pynput.keyboard lazily and return the KeyboardController class."""
    try:
        from pynput.keyboard import Controller as KeyboardController  # type: ignore
        return KeyboardController
    except Exception:
        return None
