"""
Best-effort screenshots taken around click steps.

Capture backends are tried in rank order. A provider that hits a transient
problem (backend missing, grab failed) raises CaptureUnavailable and the next
provider gets a chance; any other error ends the chain. The first provider
that writes a file wins. Nothing here ever raises into the automation loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from loguru import logger


class CaptureUnavailable(Exception):
    """Transient capture failure; the next provider should be tried."""


class CaptureProvider(ABC):
    name = "provider"

    @abstractmethod
    def capture(self, path: Path) -> Path:
        """Write a full-screen PNG to ``path`` and return it."""


class MssProvider(CaptureProvider):
    name = "mss"

    def capture(self, path: Path) -> Path:
        try:
            import mss  # type: ignore
            import mss.tools  # type: ignore
        except ImportError as e:
            raise CaptureUnavailable(f"mss not installed: {e}") from e

        try:
            with mss.mss() as sct:
                # monitors[0] is the union of all screens
                shot = sct.grab(sct.monitors[0])
        except mss.exception.ScreenShotError as e:
            raise CaptureUnavailable(f"mss grab failed: {e}") from e

        mss.tools.to_png(shot.rgb, shot.size, output=str(path))
        return path


class PyAutoGUIProvider(CaptureProvider):
    name = "pyautogui"

    def capture(self, path: Path) -> Path:
        try:
            import pyautogui  # type: ignore
        except Exception as e:
            raise CaptureUnavailable(f"pyautogui not available: {e}") from e

        try:
            image = pyautogui.screenshot()
        except Exception as e:
            raise CaptureUnavailable(f"pyautogui screenshot failed: {e}") from e

        image.save(str(path))
        return path


def default_providers() -> List[CaptureProvider]:
    return [MssProvider(), PyAutoGUIProvider()]


class ScreenshotManager:
    """Names screenshot files and walks the provider chain."""

    def __init__(
        self,
        enabled: bool,
        output_dir: Union[str, Path] = "screenshots",
        providers: Optional[Iterable[CaptureProvider]] = None,
    ) -> None:
        self._enabled = enabled
        self._output_dir = Path(output_dir)
        self._providers = list(providers) if providers is not None else default_providers()

        if enabled:
            try:
                self._output_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("Screenshots disabled, cannot create {}: {}", self._output_dir, e)
                self._enabled = False

    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def capture(self, step_name: str, suffix: str) -> Optional[Path]:
        """Capture the screen; returns the written file or None."""
        if not self._enabled:
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = self._output_dir / f"{step_name}_{suffix}_{timestamp}.png"

        for provider in self._providers:
            try:
                return provider.capture(path)
            except CaptureUnavailable as e:
                logger.debug("Capture provider {} unavailable: {}", provider.name, e)
                continue
            except Exception as e:
                logger.warning("Capture provider {} failed: {}", provider.name, e)
                return None

        logger.debug("No capture provider succeeded for {}", path.name)
        return None
