"""Persistence utilities for application settings and click points."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from models import (
    DEFAULT_POINTS,
    POINT_COUNT,
    ApplicationSettings,
    ClickPoint,
    points_from_list,
    points_to_list,
)


class SettingsManager:
    """Handles loading and saving settings and click points to disk."""

    def __init__(self, storage_path: Optional[Path] = None, points_path: Optional[Path] = None) -> None:
        package_root = Path(__file__).resolve().parent
        self._storage_path = Path(storage_path) if storage_path else package_root / "settings.json"
        self._points_path = Path(points_path) if points_path else self._storage_path.with_name("clickpoints.json")

    @property
    def storage_path(self) -> Path:
        """Absolute path to the settings file."""
        return self._storage_path

    @property
    def points_path(self) -> Path:
        """Absolute path to the click points file."""
        return self._points_path

    def load(self) -> ApplicationSettings:
        """Load settings from disk, returning defaults if the file is missing or corrupt."""
        path = self.storage_path
        if not path.exists():
            return ApplicationSettings()

        try:
            raw_data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw_data, dict):
                raise ValueError("Settings file has invalid structure")
            return ApplicationSettings.from_dict(raw_data)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to load {}: {}; using default settings", path, exc)
            self._backup_corrupt(path)
            return ApplicationSettings()

    def save(self, settings: ApplicationSettings) -> None:
        """Persist settings atomically to disk."""
        self._write_json(self.storage_path, settings.to_dict())

    def load_points(self) -> List[ClickPoint]:
        """Load the ordered click points, falling back to the built-in defaults."""
        path = self.points_path
        if not path.exists():
            logger.info("No {} found, using default click points", path.name)
            return list(DEFAULT_POINTS)

        try:
            raw_data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw_data, list):
                raise ValueError("Click points file must contain a list")
            points = points_from_list(raw_data)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to parse {}: {}; using default click points", path, exc)
            self._backup_corrupt(path)
            return list(DEFAULT_POINTS)

        if len(points) != POINT_COUNT:
            logger.warning(
                "{} holds {} click points, expected {}; using default click points",
                path.name,
                len(points),
                POINT_COUNT,
            )
            return list(DEFAULT_POINTS)

        logger.info("Loaded {} click points from {}", len(points), path.name)
        return points

    def save_points(self, points: Sequence[ClickPoint]) -> None:
        """Persist click points atomically to disk."""
        self._write_json(self.points_path, points_to_list(points))
        logger.info("Saved {} click points to {}", len(points), self.points_path.name)

    @staticmethod
    def _write_json(path: Path, payload) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)

    @staticmethod
    def _backup_corrupt(path: Path) -> None:
        # Keep the unreadable file around for inspection.
        backup_path = path.with_suffix(".bak")
        try:
            path.replace(backup_path)
        except OSError as exc:
            logger.warning("Could not back up {}: {}", path, exc)
