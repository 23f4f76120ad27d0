"""Binary ``.efx`` artifact codec.

Layout (little-endian)::

    header   magic "EFX1" | version u2 | reserved u2 | fingerprint u4 | entry_count u4
    entries  entry_count x 20-byte records, see ENTRY_DTYPE

The header count must agree with the number of records; decoding refuses
anything else instead of repairing it.
"""

from __future__ import annotations

from typing import Any, List, Protocol, Sequence, Tuple

import numpy as np

from ..errors import CodecError
from ..models.timeline import ProjectHeader, TimelineEntry
from .payload import Color, EffectPayload, EffectType

MAGIC = b"EFX1"
FORMAT_VERSION = 1
SUPPORTED_VERSIONS = (1,)
EXTENSION = ".efx"

HEADER_DTYPE = np.dtype(
    [
        ("magic", "S4"),
        ("version", "<u2"),
        ("reserved", "<u2"),
        ("fingerprint", "<u4"),
        ("entry_count", "<u4"),
    ]
)

ENTRY_DTYPE = np.dtype(
    [
        ("timestamp_ms", "<u4"),
        ("effect_index", "<u2"),
        ("effect_type", "u1"),
        ("color", "u1", (3,)),
        ("background", "u1", (3,)),
        ("period", "u1"),
        ("spf", "u1"),
        ("fade", "u1"),
        ("random_color", "u1"),
        ("random_delay", "u1"),
        ("broadcasting", "u1"),
        ("sync_index", "u1"),
    ]
)

MAX_TIMESTAMP_MS = 0xFFFFFFFF
MAX_EFFECT_INDEX = 0xFFFF


class ArtifactCodec(Protocol):
    """What the storage layer needs from a codec."""

    extension: str

    def encode(self, header: ProjectHeader, entries: Sequence[TimelineEntry]) -> bytes: ...

    def decode(self, data: bytes) -> Tuple[ProjectHeader, List[TimelineEntry]]: ...

    def default_payload(self) -> Any: ...


class EfxCodec:
    """Reads and writes the fixed-width ``.efx`` layout."""

    extension = EXTENSION

    def default_payload(self) -> EffectPayload:
        return EffectPayload.off()

    def encode(self, header: ProjectHeader, entries: Sequence[TimelineEntry]) -> bytes:
        if header.entry_count != len(entries):
            raise CodecError(
                f"Header announces {header.entry_count} entries but body has {len(entries)}"
            )
        if header.format_version not in SUPPORTED_VERSIONS:
            raise CodecError(f"Unsupported format version {header.format_version}")

        head = np.zeros(1, dtype=HEADER_DTYPE)
        head[0] = (MAGIC, header.format_version, 0, header.audio_fingerprint, len(entries))

        records = np.zeros(len(entries), dtype=ENTRY_DTYPE)
        for row, entry in enumerate(entries):
            records[row] = self._pack_entry(entry)
        return head.tobytes() + records.tobytes()

    def decode(self, data: bytes) -> Tuple[ProjectHeader, List[TimelineEntry]]:
        if len(data) < HEADER_DTYPE.itemsize:
            raise CodecError(f"Artifact too short for header ({len(data)} bytes)")

        head = np.frombuffer(data, dtype=HEADER_DTYPE, count=1)[0]
        if bytes(head["magic"]) != MAGIC:
            raise CodecError("Not an EFX artifact (bad magic)")
        version = int(head["version"])
        if version not in SUPPORTED_VERSIONS:
            raise CodecError(f"Unsupported format version {version}")

        count = int(head["entry_count"])
        body_size = len(data) - HEADER_DTYPE.itemsize
        if body_size != count * ENTRY_DTYPE.itemsize:
            raise CodecError(
                f"Header announces {count} entries but body holds {body_size} bytes"
            )

        entries: List[TimelineEntry] = []
        if count:
            records = np.frombuffer(data, dtype=ENTRY_DTYPE, count=count, offset=HEADER_DTYPE.itemsize)
            for record in records:
                entries.append(self._unpack_entry(record))

        header = ProjectHeader(
            format_version=version,
            audio_fingerprint=int(head["fingerprint"]),
            entry_count=count,
        )
        return header, entries

    @staticmethod
    def _pack_entry(entry: TimelineEntry) -> tuple:
        payload = entry.payload
        if not isinstance(payload, EffectPayload):
            raise CodecError(f"Cannot encode payload of type {type(payload).__name__}")
        if entry.timestamp_ms > MAX_TIMESTAMP_MS:
            raise CodecError(f"timestamp {entry.timestamp_ms} ms does not fit the format")
        if entry.effect_index > MAX_EFFECT_INDEX:
            raise CodecError(f"effect index {entry.effect_index} does not fit the format")
        return (
            entry.timestamp_ms,
            entry.effect_index,
            int(payload.effect_type),
            payload.color.as_tuple(),
            payload.background_color.as_tuple(),
            payload.period,
            payload.spf,
            payload.fade,
            payload.random_color,
            payload.random_delay,
            payload.broadcasting,
            payload.sync_index,
        )

    @staticmethod
    def _unpack_entry(record: np.void) -> TimelineEntry:
        try:
            payload = EffectPayload(
                effect_type=EffectType(int(record["effect_type"])),
                color=Color(*(int(v) for v in record["color"])),
                background_color=Color(*(int(v) for v in record["background"])),
                period=int(record["period"]),
                spf=int(record["spf"]),
                fade=int(record["fade"]),
                random_color=int(record["random_color"]),
                random_delay=int(record["random_delay"]),
                broadcasting=int(record["broadcasting"]),
                sync_index=int(record["sync_index"]),
            )
        except ValueError as exc:
            raise CodecError(f"Corrupt entry record: {exc}") from exc
        return TimelineEntry(
            timestamp_ms=int(record["timestamp_ms"]),
            payload=payload,
            effect_index=int(record["effect_index"]),
        )


__all__ = [
    "ArtifactCodec",
    "EfxCodec",
    "HEADER_DTYPE",
    "ENTRY_DTYPE",
    "MAGIC",
    "FORMAT_VERSION",
    "EXTENSION",
]
