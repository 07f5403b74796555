from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .logger import get_logger

_logger = get_logger("settings")

_HOME_ENV = "IMAGE_BUNDLER_HOME"
_DEFAULT_DIRNAME = ".image_bundler"


def storage_dir() -> Path:
    """Per-user directory holding the derivative DB and settings."""
    env = (os.getenv(_HOME_ENV) or "").strip()
    if env:
        return Path(env).expanduser()
    return Path.home() / _DEFAULT_DIRNAME


class SettingsManager:
    def __init__(self, settings_path: str | Path | None = None):
        if settings_path is None:
            settings_path = storage_dir() / "settings.json"
        self.settings_path = str(settings_path)
        self._settings: dict[str, Any] = {}
        self.load()

    DEFAULTS: dict[str, Any] = {
        "thumbnail_width": 100,
        "thumbnail_height": 100,
        "resize_max_side": 800,
        "db_name": "derivatives.db",
        "last_directory": None,
    }

    def load(self) -> None:
        try:
            if os.path.exists(self.settings_path):
                with open(self.settings_path, encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        self._settings = data
                        _logger.debug("settings loaded: %s", self.settings_path)
                        return
                    _logger.warning("settings file is not a JSON object: %s", self.settings_path)
        except (OSError, ValueError) as e:
            _logger.warning("settings load failed: %s", e)
        self._settings = {}

    def save(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.settings_path) or ".", exist_ok=True)
            with open(self.settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, ensure_ascii=False, indent=2)
            _logger.debug("settings saved: %s", self.settings_path)
        except OSError as e:
            _logger.error("settings save failed: %s", e)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._settings:
            return self._settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def has(self, key: str) -> bool:
        return key in self._settings

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self.save()

    @property
    def data(self) -> dict[str, Any]:
        return self._settings

    @property
    def thumbnail_box(self) -> tuple[int, int]:
        return int(self.get("thumbnail_width")), int(self.get("thumbnail_height"))

    @property
    def resize_box(self) -> tuple[int, int]:
        side = int(self.get("resize_max_side"))
        return side, side

    @property
    def db_path(self) -> Path:
        return Path(self.settings_path).parent / str(self.get("db_name"))

    @property
    def last_directory(self) -> str | None:
        val = self.get("last_directory")
        return val if isinstance(val, str) and os.path.isdir(val) else None
