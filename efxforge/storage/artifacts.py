"""Artifact store: ``<project-id>.efx`` files inside a storage directory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from ..codec.efx_format import EXTENSION
from ..errors import NotFoundError, PathUnavailableError, ReadFailedError, WriteFailedError
from .io import PathLike, atomic_write_bytes, same_content
from .location import ExternalLocationResolver, LocationKind, StorageLocation

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    """Outcome of moving a set of artifacts between two directories.

    Ids in ``moved`` are fully moved: the destination holds a byte-identical
    copy and the source copy is gone. Ids in ``failed`` still live in the
    source directory.
    """

    source: Optional[Path] = None
    destination: Optional[Path] = None
    moved: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def failed_ids(self) -> Set[str]:
        return set(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "MigrationResult") -> None:
        self.moved.extend(other.moved)
        self.skipped.extend(other.skipped)
        self.failed.update(other.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": str(self.source) if self.source else None,
            "destination": str(self.destination) if self.destination else None,
            "moved": list(self.moved),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
        }


def _check_id(project_id: str) -> str:
    if not project_id or project_id in (".", "..") or "/" in project_id or "\\" in project_id:
        raise ValueError(f"Invalid project id {project_id!r}")
    return project_id


class ArtifactStore:
    def __init__(
        self,
        internal_dir: PathLike,
        extension: str = EXTENSION,
        external_resolver: Optional[ExternalLocationResolver] = None,
    ) -> None:
        self.internal_dir = Path(internal_dir)
        self.extension = extension
        self.external_resolver = external_resolver

    # Directories -----------------------------------------------------
    def resolve_directory(self, location: StorageLocation, writable: bool = True) -> Path:
        """Directory behind ``location``.

        With ``writable=False`` the directory is only looked up: it must already
        exist, but it is neither created nor checked for write access. That is
        enough to read artifacts left behind in an old location.
        """
        if location.kind is LocationKind.DEFAULT_INTERNAL:
            return self._ensure_writable(self.internal_dir)

        if location.kind is LocationKind.EXTERNAL_REFERENCE:
            if self.external_resolver is None:
                raise PathUnavailableError(
                    f"No resolver available for external location {location.value}"
                )
            try:
                directory = Path(self.external_resolver.resolve(location.value))
            except Exception as exc:
                logger.error(f"External location {location.value} could not be resolved: {exc}")
                raise PathUnavailableError(
                    f"External location {location.value} is unavailable: {exc}"
                ) from exc
        else:
            directory = Path(location.value)

        if writable:
            return self._ensure_writable(directory)
        if not directory.is_dir():
            raise PathUnavailableError(f"Directory {directory} does not exist")
        return directory

    @staticmethod
    def _ensure_writable(directory: Path) -> Path:
        if not directory.is_dir():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise PathUnavailableError(f"Cannot create directory {directory}: {exc}") from exc
            logger.info(f"Created EFX directory: {directory}")
        if not os.access(directory, os.W_OK | os.X_OK):
            raise PathUnavailableError(f"Directory {directory} is not writable")
        return directory

    def artifact_path(self, directory: PathLike, project_id: str) -> Path:
        return Path(directory) / f"{_check_id(project_id)}{self.extension}"

    # Single artifacts ------------------------------------------------
    def exists(self, directory: PathLike, project_id: str) -> bool:
        return self.artifact_path(directory, project_id).is_file()

    def read_artifact_bytes(self, directory: PathLike, project_id: str) -> bytes:
        path = self.artifact_path(directory, project_id)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"No artifact for project {project_id} in {directory}") from exc
        except OSError as exc:
            logger.error(f"Error reading artifact {path}: {exc}")
            raise ReadFailedError(f"Cannot read artifact {path}: {exc}") from exc
        logger.debug(f"Read artifact {path} ({len(data)} bytes)")
        return data

    def write_artifact_bytes(self, directory: PathLike, project_id: str, data: bytes) -> Path:
        path = self.artifact_path(directory, project_id)
        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            logger.error(f"Error writing artifact {path}: {exc}")
            raise WriteFailedError(f"Cannot write artifact {path}: {exc}") from exc
        logger.debug(f"Saved artifact {path} ({len(data)} bytes)")
        return path

    def delete_artifact(self, directory: PathLike, project_id: str) -> bool:
        """Remove the artifact; returns False when there was nothing to remove."""
        path = self.artifact_path(directory, project_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error(f"Error deleting artifact {path}: {exc}")
            raise WriteFailedError(f"Cannot delete artifact {path}: {exc}") from exc
        logger.debug(f"Deleted artifact {path}")
        return True

    def copy_artifact(self, directory: PathLike, project_id: str, target: PathLike) -> Path:
        """Copy the artifact byte for byte to ``target`` (any path, any name)."""
        data = self.read_artifact_bytes(directory, project_id)
        try:
            path = atomic_write_bytes(target, data)
        except OSError as exc:
            logger.error(f"Error copying artifact {project_id} to {target}: {exc}")
            raise WriteFailedError(f"Cannot write {target}: {exc}") from exc
        logger.debug(f"Copied artifact {project_id} to {path} ({len(data)} bytes)")
        return path

    def list_ids(self, directory: PathLike) -> List[str]:
        directory = Path(directory)
        if not directory.is_dir():
            return []
        return sorted(
            path.stem
            for path in directory.iterdir()
            if path.suffix == self.extension and path.is_file() and not path.name.startswith(".")
        )

    # Migration -------------------------------------------------------
    def migrate(self, old_directory: PathLike, new_directory: PathLike, ids: Iterable[str]) -> MigrationResult:
        """Move the artifacts of ``ids`` from ``old_directory`` to ``new_directory``.

        Copy first, verify, then delete the source. A failing id is recorded
        and the remaining ids are still processed. Ids whose source is gone are
        skipped; ids already present byte-identical at the destination only
        have their source removed, so an interrupted run can simply be repeated.
        """
        source = Path(old_directory)
        destination = Path(new_directory)
        result = MigrationResult(source=source, destination=destination)
        ids = list(ids)

        if _same_directory(source, destination):
            logger.debug(f"Migration skipped, {source} and {destination} are the same directory")
            result.skipped.extend(ids)
            return result

        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error(f"Cannot prepare {destination} for migration: {exc}")
            result.failed.update({project_id: str(exc) for project_id in ids})
            return result

        logger.info(f"Migrating {len(ids)} artifact(s) from {source} to {destination}")
        for project_id in ids:
            try:
                moved = self._migrate_one(project_id, source, destination)
            except (OSError, ValueError) as exc:
                logger.error(f"Error moving artifact {project_id}: {exc}")
                result.failed[project_id] = str(exc)
                continue
            if moved:
                result.moved.append(project_id)
            else:
                result.skipped.append(project_id)

        logger.info(
            f"Migration finished: {len(result.moved)} moved, {len(result.skipped)} skipped, "
            f"{len(result.failed)} failed"
        )
        return result

    def _migrate_one(self, project_id: str, source: Path, destination: Path) -> bool:
        old_file = self.artifact_path(source, project_id)
        new_file = self.artifact_path(destination, project_id)

        if not old_file.is_file():
            logger.debug(f"No artifact for {project_id} in {source}, nothing to move")
            return False

        if same_content(old_file, new_file):
            logger.debug(f"{new_file} already present, removing source copy")
        else:
            atomic_write_bytes(new_file, old_file.read_bytes())
            if not same_content(old_file, new_file):
                raise OSError(f"Copy of {old_file} to {new_file} does not match the source")

        old_file.unlink()
        logger.debug(f"Moved {old_file.name} from {source} to {destination}")
        return True


def _same_directory(first: Path, second: Path) -> bool:
    try:
        if first.exists() and second.exists():
            return os.path.samefile(first, second)
    except OSError:
        pass
    return first.resolve() == second.resolve()


__all__ = ["ArtifactStore", "MigrationResult"]
