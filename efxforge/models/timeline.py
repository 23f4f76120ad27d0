"""Timeline engine - the in-memory header + body of one open project.

Every mutating call rebuilds the entry list from scratch:

1. apply the edit to a copy of the current entries,
2. stable-sort the copy by ``timestamp_ms``,
3. renumber ``effect_index`` as the 1-based sorted position,

and only then swaps the copy in. The header's entry count is never stored;
it is read from the body whenever a header snapshot is requested, so the
two cannot drift apart. A call that raises leaves the timeline untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from operator import attrgetter
from typing import Any, Iterable, List, Optional, Tuple

from ..errors import OutOfRangeError

CURRENT_FORMAT_VERSION = 1
NO_AUDIO = 0
MAX_FINGERPRINT = 0xFFFFFFFF


@dataclass(frozen=True)
class TimelineEntry:
    """One scheduled effect command.

    ``payload`` belongs to the codec and is passed through untouched.
    ``effect_index`` is assigned by :class:`Timeline`; whatever a caller puts
    there is overwritten on insertion.
    """

    timestamp_ms: int
    payload: Any = None
    effect_index: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.timestamp_ms, bool) or not isinstance(self.timestamp_ms, int):
            raise TypeError("timestamp_ms must be an int")
        if self.timestamp_ms < 0:
            raise ValueError("timestamp_ms must be >= 0")
        if self.effect_index < 0:
            raise ValueError("effect_index must be >= 0")

    def with_index(self, effect_index: int) -> "TimelineEntry":
        if effect_index == self.effect_index:
            return self
        return replace(self, effect_index=effect_index)


@dataclass(frozen=True)
class ProjectHeader:
    """Summary fields of an artifact, always derived from a :class:`Timeline`."""

    format_version: int = CURRENT_FORMAT_VERSION
    audio_fingerprint: int = NO_AUDIO
    entry_count: int = 0

    @property
    def has_audio(self) -> bool:
        return self.audio_fingerprint != NO_AUDIO

    def fingerprint_hex(self) -> str:
        return f"0x{self.audio_fingerprint:08X}"


def _normalise(entries: Iterable[TimelineEntry]) -> List[TimelineEntry]:
    ordered = sorted(entries, key=attrgetter("timestamp_ms"))  # sorted() is stable
    return [entry.with_index(position) for position, entry in enumerate(ordered, start=1)]


def _check_fingerprint(value: Optional[int]) -> int:
    if value is None:
        return NO_AUDIO
    value = int(value)
    if not 0 <= value <= MAX_FINGERPRINT:
        raise ValueError(f"audio fingerprint must fit in 32 bits, got {value}")
    return value


class Timeline:
    """Header + ordered entries of one project, kept consistent on every edit."""

    def __init__(
        self,
        entries: Iterable[TimelineEntry] = (),
        audio_fingerprint: Optional[int] = NO_AUDIO,
        format_version: int = CURRENT_FORMAT_VERSION,
    ) -> None:
        self.format_version = format_version
        self._audio_fingerprint = _check_fingerprint(audio_fingerprint)
        self._entries: List[TimelineEntry] = _normalise(entries)

    @classmethod
    def default(cls, payload: Any) -> "Timeline":
        """A fresh project: one entry at 0 ms carrying ``payload``."""
        return cls([TimelineEntry(timestamp_ms=0, payload=payload)])

    @classmethod
    def from_artifact(cls, header: ProjectHeader, entries: Iterable[TimelineEntry]) -> "Timeline":
        return cls(entries, audio_fingerprint=header.audio_fingerprint, format_version=header.format_version)

    # Read access -----------------------------------------------------
    @property
    def entries(self) -> Tuple[TimelineEntry, ...]:
        return tuple(self._entries)

    @property
    def header(self) -> ProjectHeader:
        return ProjectHeader(
            format_version=self.format_version,
            audio_fingerprint=self._audio_fingerprint,
            entry_count=len(self._entries),
        )

    @property
    def audio_fingerprint(self) -> int:
        return self._audio_fingerprint

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timeline):
            return NotImplemented
        return self.header == other.header and self._entries == other._entries

    def __repr__(self) -> str:
        return (
            f"Timeline(entries={len(self._entries)}, "
            f"fingerprint={self.header.fingerprint_hex()}, version={self.format_version})"
        )

    def copy(self) -> "Timeline":
        return Timeline(self._entries, self._audio_fingerprint, self.format_version)

    # Mutations -------------------------------------------------------
    def add_entry(self, candidate: TimelineEntry) -> None:
        self._entries = _normalise([*self._entries, candidate])

    def update_entry(self, position: int, replacement: TimelineEntry) -> None:
        """Replace the entry at ``position`` (index before re-sorting)."""
        self._check_position(position)
        entries = list(self._entries)
        entries[position] = replacement
        self._entries = _normalise(entries)

    def delete_entry(self, position: int) -> None:
        self._check_position(position)
        entries = list(self._entries)
        del entries[position]
        self._entries = _normalise(entries)

    def set_audio_fingerprint(self, value: Optional[int]) -> None:
        self._audio_fingerprint = _check_fingerprint(value)

    def apply(self, edit: "TimelineEdit") -> None:
        edit.apply_to(self)

    def _check_position(self, position: int) -> None:
        if isinstance(position, bool) or not isinstance(position, int):
            raise OutOfRangeError(f"Entry position must be an int, got {position!r}")
        if not 0 <= position < len(self._entries):
            raise OutOfRangeError(
                f"Entry position {position} out of range for {len(self._entries)} entries"
            )


# Edit commands -------------------------------------------------------


class TimelineEdit:
    """One add/update/delete request, applied through :meth:`Timeline.apply`."""

    def apply_to(self, timeline: Timeline) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def describe(self) -> str:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass(frozen=True)
class AddEntry(TimelineEdit):
    entry: TimelineEntry

    def apply_to(self, timeline: Timeline) -> None:
        timeline.add_entry(self.entry)

    def describe(self) -> str:
        return f"add entry at {self.entry.timestamp_ms} ms"


@dataclass(frozen=True)
class UpdateEntry(TimelineEdit):
    position: int
    entry: TimelineEntry

    def apply_to(self, timeline: Timeline) -> None:
        timeline.update_entry(self.position, self.entry)

    def describe(self) -> str:
        return f"update entry {self.position} -> {self.entry.timestamp_ms} ms"


@dataclass(frozen=True)
class DeleteEntry(TimelineEdit):
    position: int

    def apply_to(self, timeline: Timeline) -> None:
        timeline.delete_entry(self.position)

    def describe(self) -> str:
        return f"delete entry {self.position}"


__all__ = [
    "CURRENT_FORMAT_VERSION",
    "NO_AUDIO",
    "MAX_FINGERPRINT",
    "TimelineEntry",
    "ProjectHeader",
    "Timeline",
    "TimelineEdit",
    "AddEntry",
    "UpdateEntry",
    "DeleteEntry",
]
