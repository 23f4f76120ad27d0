"""Storage-location setting: where artifacts live."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

DEFAULT_INTERNAL_PREFERENCE = "default_internal"

_URI_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


class LocationKind(str, Enum):
    DEFAULT_INTERNAL = "default_internal"
    EXTERNAL_REFERENCE = "external_reference"
    EXPLICIT_PATH = "explicit_path"


class ExternalLocationResolver(Protocol):
    """Grants filesystem access to an external, capability-scoped location."""

    def resolve(self, reference: str) -> Path: ...


@dataclass(frozen=True)
class StorageLocation:
    kind: LocationKind = LocationKind.DEFAULT_INTERNAL
    value: str = ""

    @classmethod
    def default(cls) -> "StorageLocation":
        return cls(LocationKind.DEFAULT_INTERNAL, "")

    @classmethod
    def external(cls, reference: str) -> "StorageLocation":
        return cls(LocationKind.EXTERNAL_REFERENCE, reference)

    @classmethod
    def path(cls, directory: "str | Path") -> "StorageLocation":
        return cls(LocationKind.EXPLICIT_PATH, str(Path(directory).expanduser()))

    @classmethod
    def from_preference(cls, text: str) -> "StorageLocation":
        """Parse the string form stored in the preferences file."""
        text = (text or "").strip()
        if not text or text == DEFAULT_INTERNAL_PREFERENCE:
            return cls.default()
        if text.startswith("file://"):
            return cls.path(unquote(urlparse(text).path))
        if _URI_PATTERN.match(text):
            return cls.external(text)
        return cls.path(text)

    def to_preference(self) -> str:
        if self.kind is LocationKind.DEFAULT_INTERNAL:
            return DEFAULT_INTERNAL_PREFERENCE
        return self.value

    @property
    def is_default(self) -> bool:
        return self.kind is LocationKind.DEFAULT_INTERNAL

    def describe(self) -> str:
        if self.kind is LocationKind.DEFAULT_INTERNAL:
            return "default (internal)"
        if self.kind is LocationKind.EXTERNAL_REFERENCE:
            return f"external: {self.value}"
        return f"custom: {self.value}"


__all__ = [
    "DEFAULT_INTERNAL_PREFERENCE",
    "LocationKind",
    "StorageLocation",
    "ExternalLocationResolver",
]
