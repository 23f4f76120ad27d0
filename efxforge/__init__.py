"""efxforge package: timed lighting-effect projects stored as .efx artifacts."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("efxforge")
except PackageNotFoundError:  # pragma: no cover - during local dev without install
    __version__ = "0.0.0"

__all__ = ["__version__"]
