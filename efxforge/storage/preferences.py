"""Small persisted preferences (storage location, music folder)."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from ..errors import ReadFailedError, WriteFailedError
from .io import PathLike, load_json, save_json
from .location import DEFAULT_INTERNAL_PREFERENCE, StorageLocation

logger = logging.getLogger(__name__)

PREFERENCES_FILENAME = "preferences.json"
DEFAULT_MUSIC_PREFERENCE = "default_music"


@dataclass
class Preferences:
    efx_storage_path: str = DEFAULT_INTERNAL_PREFERENCE
    music_load_path: str = DEFAULT_MUSIC_PREFERENCE
    # project id -> directory still holding its artifact after a failed migration
    stranded_artifacts: Dict[str, str] = field(default_factory=dict)

    @property
    def storage_location(self) -> StorageLocation:
        return StorageLocation.from_preference(self.efx_storage_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "efx_storage_path": self.efx_storage_path,
            "music_load_path": self.music_load_path,
            "stranded_artifacts": dict(self.stranded_artifacts),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Preferences":
        return cls(
            efx_storage_path=data.get("efx_storage_path") or DEFAULT_INTERNAL_PREFERENCE,
            music_load_path=data.get("music_load_path") or DEFAULT_MUSIC_PREFERENCE,
            stranded_artifacts={str(key): str(value) for key, value in (data.get("stranded_artifacts") or {}).items()},
        )


class PreferencesStore:
    """Loads and saves :class:`Preferences` as one JSON object."""

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Preferences:
        with self._lock:
            if not self.path.exists():
                return Preferences()
            try:
                data = load_json(self.path)
            except (OSError, ValueError) as exc:
                raise ReadFailedError(f"Cannot read preferences {self.path}: {exc}") from exc
            if not isinstance(data, dict):
                raise ReadFailedError(f"Preferences {self.path} is not a JSON object")
            return Preferences.from_dict(data)

    def save(self, preferences: Preferences) -> None:
        with self._lock:
            try:
                save_json(self.path, preferences.to_dict())
            except OSError as exc:
                raise WriteFailedError(f"Cannot write preferences {self.path}: {exc}") from exc
        logger.debug(f"Saved preferences to {self.path}")

    def save_storage_state(self, location: StorageLocation, stranded: Mapping[str, "str | Path"]) -> None:
        """Record the current location and the ids left behind in one write."""
        preferences = self.load()
        preferences.efx_storage_path = location.to_preference()
        preferences.stranded_artifacts = {key: str(value) for key, value in stranded.items()}
        self.save(preferences)

    def set_stranded(self, stranded: Mapping[str, "str | Path"]) -> None:
        preferences = self.load()
        preferences.stranded_artifacts = {key: str(value) for key, value in stranded.items()}
        self.save(preferences)

    def set_music_load_path(self, path: str) -> None:
        preferences = self.load()
        preferences.music_load_path = path or DEFAULT_MUSIC_PREFERENCE
        self.save(preferences)
        logger.info(f"Music load path changed to {preferences.music_load_path}")


__all__ = ["Preferences", "PreferencesStore", "PREFERENCES_FILENAME", "DEFAULT_MUSIC_PREFERENCE"]
