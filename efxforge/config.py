"""Service configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

from .storage.catalog import CATALOG_FILENAME
from .storage.location import StorageLocation
from .storage.preferences import DEFAULT_MUSIC_PREFERENCE, PREFERENCES_FILENAME, Preferences

ENV_HOME = "EFXFORGE_HOME"


def default_data_dir() -> Path:
    override = os.getenv(ENV_HOME)
    if override:
        return Path(override).expanduser()
    root = Path(os.getenv("LOCALAPPDATA", Path.home() / ".local" / "share"))
    return root / "efxforge"


def default_music_dir() -> Path:
    return Path.home() / "Music"


def music_directory(preference: Optional[str]) -> Path:
    """Folder audio files are picked from.

    Capability URIs (``content://...``) cannot be listed as a folder, so they
    fall back to the default music directory like ``default_music`` does.
    """
    text = (preference or "").strip()
    if not text or text == DEFAULT_MUSIC_PREFERENCE:
        return default_music_dir()
    if text.startswith("file://"):
        return Path(unquote(urlparse(text).path))
    if "://" in text:
        return default_music_dir()
    return Path(text).expanduser()


@dataclass
class ServiceConfig:
    data_dir: Path = field(default_factory=default_data_dir)
    storage_location: StorageLocation = field(default_factory=StorageLocation.default)
    lock_timeout: float = 0.0  # seconds to wait for a busy project; 0 fails at once
    export_dir: Optional[Path] = None
    music_load_path: str = DEFAULT_MUSIC_PREFERENCE

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        if self.export_dir is None:
            self.export_dir = self.data_dir / "EfxExports"
        if self.lock_timeout < 0:
            raise ValueError("lock_timeout must be >= 0")

    @property
    def catalog_path(self) -> Path:
        return self.data_dir / CATALOG_FILENAME

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / PREFERENCES_FILENAME

    @property
    def internal_dir(self) -> Path:
        return self.data_dir / "efx"

    @classmethod
    def from_preferences(cls, preferences: Preferences, data_dir: Optional[Path] = None, **kwargs) -> "ServiceConfig":
        return cls(
            data_dir=data_dir if data_dir is not None else default_data_dir(),
            storage_location=preferences.storage_location,
            music_load_path=preferences.music_load_path,
            **kwargs,
        )


__all__ = ["ServiceConfig", "default_data_dir", "default_music_dir", "music_directory", "ENV_HOME"]
