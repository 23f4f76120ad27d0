"""Project persistence helpers."""

from .artifacts import ArtifactStore, MigrationResult
from .catalog import CATALOG_FILENAME, MetadataCatalog
from .io import atomic_write_bytes, load_json, save_json
from .location import ExternalLocationResolver, LocationKind, StorageLocation
from .preferences import PREFERENCES_FILENAME, Preferences, PreferencesStore

__all__ = [
    "ArtifactStore",
    "MigrationResult",
    "MetadataCatalog",
    "CATALOG_FILENAME",
    "StorageLocation",
    "LocationKind",
    "ExternalLocationResolver",
    "Preferences",
    "PreferencesStore",
    "PREFERENCES_FILENAME",
    "atomic_write_bytes",
    "load_json",
    "save_json",
]
