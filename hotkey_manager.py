"""Global emergency-stop hotkey built on top of pynput."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from loguru import logger

try:
    from pynput import keyboard  # type: ignore
except Exception as _e:  # pragma: no cover - environment dependent
    keyboard = None  # type: ignore


class HotkeyManager:
    """Watches one system-wide key combination, whichever window has focus."""

    _SPECIAL_KEY_ALIASES: Dict[str, str] = {
        "ctrl": "ctrl",
        "control": "ctrl",
        "alt": "alt",
        "shift": "shift",
        "win": "cmd",
        "cmd": "cmd",
        "command": "cmd",
        "option": "alt",
        "super": "cmd",
        "del": "delete",
        "escape": "esc",
        "return": "enter",
        "pgup": "page_up",
        "pgdn": "page_down",
    }

    def __init__(self, emergency_hotkey: str = "Delete") -> None:
        self._emergency_hotkey = emergency_hotkey
        self._emergency_callback: Optional[Callable[[], None]] = None
        self._listener: Optional[object] = None
        self._is_registered = False

    @property
    def is_enabled(self) -> bool:
        return self._is_registered

    def register_emergency_callback(self, callback: Callable[[], None]) -> None:
        self._emergency_callback = callback

    def enable_hotkeys(self) -> bool:
        if self._is_registered:
            return True

        if self._emergency_callback is None:
            return False

        try:
            hotkey = self._to_pynput_hotkey(self._emergency_hotkey)
        except ValueError as exc:
            logger.warning("Invalid hotkey definition: {}", exc)
            return False

        if keyboard is None:
            logger.warning("pynput/keyboard backend not available; global hotkeys disabled")
            self._listener = None
            self._is_registered = False
            return False
        try:
            self._listener = keyboard.GlobalHotKeys({hotkey: self._on_emergency})
            self._listener.daemon = True
            self._listener.start()
            self._is_registered = True
            logger.info("Emergency stop hotkey registered: {}", self._emergency_hotkey)
            return True
        except Exception as exc:  # pragma: no cover - system specific
            logger.warning("Failed to register hotkeys: {}", exc)
            self._listener = None
            self._is_registered = False
            return False

    def disable_hotkeys(self) -> None:
        if not self._is_registered:
            return

        if self._listener is not None:
            try:
                self._listener.stop()  # type: ignore[attr-defined]
            except Exception as exc:
                logger.debug("Hotkey listener stop failed: {}", exc)
            self._listener = None

        self._is_registered = False

    def get_emergency_hotkey(self) -> str:
        return self._emergency_hotkey

    def update_hotkey(self, emergency_hotkey: str) -> bool:
        self._to_pynput_hotkey(emergency_hotkey)

        was_registered = self._is_registered
        if was_registered:
            self.disable_hotkeys()

        self._emergency_hotkey = emergency_hotkey

        if was_registered:
            return self.enable_hotkeys()
        return True

    def _on_emergency(self) -> None:
        # Called on the pynput listener thread.
        callback = self._emergency_callback
        if callback is None:
            return
        try:
            callback()
        except Exception as exc:
            logger.error("Emergency hotkey callback failed: {}", exc)

    @classmethod
    def _to_pynput_hotkey(cls, hotkey: str) -> str:
        if not hotkey:
            raise ValueError("Empty hotkey string")

        tokens = [token.strip() for token in hotkey.replace("+", " ").split() if token.strip()]
        if not tokens:
            raise ValueError("Hotkey contains no tokens")

        parsed: list[str] = []
        for token in tokens:
            lower_token = token.lower()

            if lower_token in cls._SPECIAL_KEY_ALIASES:
                parsed.append(f"<{cls._SPECIAL_KEY_ALIASES[lower_token]}>")
                continue

            if lower_token.startswith("f") and lower_token[1:].isdigit():
                parsed.append(f"<{lower_token}>")
                continue

            if len(lower_token) == 1:
                parsed.append(lower_token)
                continue

            # Named keys such as "delete", "pause" or "page_up"
            if not lower_token.replace("_", "").isalnum():
                raise ValueError(f"Unknown key token: {token}")
            parsed.append(f"<{lower_token}>")

        return "+".join(parsed)
