"""Artifact codec and music fingerprint collaborators."""

from .efx_format import ArtifactCodec, EfxCodec, EXTENSION
from .fingerprint import FileFingerprinter, Fingerprinter
from .payload import Color, EffectPayload, EffectType

__all__ = [
    "ArtifactCodec",
    "EfxCodec",
    "EXTENSION",
    "Fingerprinter",
    "FileFingerprinter",
    "Color",
    "EffectPayload",
    "EffectType",
]
