"""Catalog record describing one project."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, Optional
from urllib.parse import unquote

DEFAULT_PROJECT_NAME = "New EFX"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_project_id() -> str:
    return uuid.uuid4().hex


def audio_display_name(audio_ref: Optional[str]) -> Optional[str]:
    """File stem of an audio reference (path or URI), without extension."""
    if not audio_ref:
        return None
    tail = unquote(audio_ref.rstrip("/").rsplit("/", 1)[-1])
    return PurePath(tail).stem or None


@dataclass
class ProjectRecord:
    id: str = field(default_factory=new_project_id)
    name: str = DEFAULT_PROJECT_NAME
    audio_ref: Optional[str] = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = 0

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("project id must not be empty")
        self.updated_at = max(self.updated_at, self.created_at)

    def touch(self) -> None:
        """Bump ``updated_at``; never moves it backwards."""
        self.updated_at = max(now_ms(), self.updated_at, self.created_at)

    @property
    def audio_name(self) -> Optional[str]:
        return audio_display_name(self.audio_ref)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "audioRef": self.audio_ref,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectRecord":
        created = data.get("createdAt")
        created_at = int(created) if created is not None else now_ms()
        return cls(
            id=str(data["id"]),
            name=data.get("name", DEFAULT_PROJECT_NAME),
            audio_ref=data.get("audioRef", data.get("musicUriString")),
            created_at=created_at,
            updated_at=int(data.get("updatedAt", created_at)),
        )


__all__ = ["ProjectRecord", "DEFAULT_PROJECT_NAME", "now_ms", "new_project_id", "audio_display_name"]
