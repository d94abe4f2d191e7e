"""
Player settings with JSON persistence.
Volume, playback rate, quality override, autoplay and last position survive restarts.
"""

from typing import Any, Callable, Dict, List, Optional
from shared.constants import DEFAULT_CONFIG_DIR, PLAYER_SETTINGS_FILENAME, PLAYBACK_RATES
from pathlib import Path
import logging
import threading
import json

logger = logging.getLogger(__name__)

QUALITY_CHOICES = ("low", "medium", "high")


class PlayerSettings:
    """
    Stores the listener's preferences in the user config directory.
    Every change is written to disk immediately.
    """

    def __init__(self, config_dir: Optional[str] = None):
        self.volume: float = 1.0
        self.playback_rate: float = 1.0
        self.quality: Optional[str] = None
        self.autoplay: bool = True
        self.last_article_id: Optional[str] = None
        self.last_position: float = 0.0
        self.api_url: Optional[str] = None

        self._lock = threading.Lock()
        self._on_change_callbacks: List[Callable[[], None]] = []
        base = Path(config_dir or DEFAULT_CONFIG_DIR).expanduser()
        self._settings_file = base / PLAYER_SETTINGS_FILENAME

        self._load_from_file()

    @property
    def path(self) -> Path:
        return self._settings_file

    def update(self, **changes: Any) -> None:
        """Validate and apply changes, then save."""
        with self._lock:
            for key, value in changes.items():
                self._apply(key, value)
            self._save_to_file()
        self._notify_change()

    def remember_position(self, article_id: str, position: float) -> None:
        with self._lock:
            self.last_article_id = article_id
            self.last_position = max(0.0, float(position))
            self._save_to_file()

    def resume_position(self, article_id: str) -> float:
        """Where to pick up `article_id`, or 0 if it was not the last one played."""
        if article_id and article_id == self.last_article_id:
            return self.last_position
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": "1.0",
            "volume": self.volume,
            "playback_rate": self.playback_rate,
            "quality": self.quality,
            "autoplay": self.autoplay,
            "last_article_id": self.last_article_id,
            "last_position": self.last_position,
            "api_url": self.api_url,
        }

    def _apply(self, key: str, value: Any) -> None:
        if key == "volume":
            self.volume = min(1.0, max(0.0, float(value)))
        elif key == "playback_rate":
            if value not in PLAYBACK_RATES:
                raise ValueError(f"Unsupported playback rate: {value}")
            self.playback_rate = value
        elif key == "quality":
            if value is not None and value not in QUALITY_CHOICES:
                raise ValueError(f"Unknown quality: {value}")
            self.quality = value
        elif key == "autoplay":
            self.autoplay = bool(value)
        elif key == "api_url":
            self.api_url = value.rstrip("/") if value else None
        else:
            raise KeyError(f"Unknown setting: {key}")

    def add_change_callback(self, callback: Callable[[], None]) -> None:
        if callback not in self._on_change_callbacks:
            self._on_change_callbacks.append(callback)

    def _notify_change(self) -> None:
        for callback in self._on_change_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in settings change callback: {e}")

    def _save_to_file(self) -> None:
        """Save settings to JSON file."""
        try:
            self._settings_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._settings_file, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Error saving settings to {self._settings_file}: {e}")

    def _load_from_file(self) -> None:
        """Load settings from JSON file, keeping defaults for anything missing or invalid."""
        if not self._settings_file.exists():
            logger.debug(f"No settings file at {self._settings_file}, using defaults")
            return
        try:
            with open(self._settings_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error reading settings file: {e}, using defaults")
            return

        if not isinstance(data, dict):
            logger.warning("Invalid settings file format, using defaults")
            return

        for key in ("volume", "playback_rate", "quality", "autoplay", "api_url"):
            if key in data:
                try:
                    self._apply(key, data[key])
                except (TypeError, ValueError) as e:
                    logger.warning(f"Ignoring invalid setting {key}: {e}")
        self.last_article_id = data.get("last_article_id")
        try:
            self.last_position = max(0.0, float(data.get("last_position") or 0.0))
        except (TypeError, ValueError):
            self.last_position = 0.0
