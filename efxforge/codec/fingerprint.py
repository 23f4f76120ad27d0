"""Music fingerprint: a stable 32-bit id derived from an audio resource."""

from __future__ import annotations

import logging
import zlib
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from ..errors import ReadFailedError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class Fingerprinter(Protocol):
    def fingerprint(self, audio_ref: str) -> int: ...


def audio_ref_to_path(audio_ref: str) -> Path:
    """Accept plain paths and ``file://`` URIs."""
    parsed = urlparse(audio_ref)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(audio_ref)


class FileFingerprinter:
    """CRC-32 over the raw bytes of a local audio file.

    0 is reserved for "no audio", so a file that happens to hash to 0 is
    reported as 1.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    def fingerprint(self, audio_ref: str) -> int:
        path = audio_ref_to_path(audio_ref)
        crc = 0
        try:
            with path.open("rb") as handle:
                for chunk in iter(lambda: handle.read(self.chunk_size), b""):
                    crc = zlib.crc32(chunk, crc)
        except OSError as exc:
            logger.error(f"Cannot fingerprint {audio_ref}: {exc}")
            raise ReadFailedError(f"Cannot read audio resource {audio_ref}: {exc}") from exc

        value = (crc & 0xFFFFFFFF) or 1
        logger.debug(f"Fingerprint 0x{value:08X} for {audio_ref}")
        return value


__all__ = ["Fingerprinter", "FileFingerprinter", "audio_ref_to_path"]
