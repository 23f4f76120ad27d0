"""Project service - keeps the catalog, the artifact store and the timeline in step.

The catalog and the artifact files cannot be updated atomically together.
Every operation orders its writes so that a failure half way leaves a state
the next call can recover from. Such failures surface as a recoverable
:class:`~efxforge.errors.EfxError`.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .codec import EfxCodec, FileFingerprinter
from .codec.efx_format import ArtifactCodec
from .codec.fingerprint import Fingerprinter
from .config import ServiceConfig, music_directory as resolve_music_directory
from .errors import (
    BusyError,
    CodecError,
    EfxError,
    InconsistentStateError,
    NotFoundError,
    PartialMigrationError,
    PathUnavailableError,
)
from .models.record import DEFAULT_PROJECT_NAME, ProjectRecord, audio_display_name
from .models.timeline import Timeline, TimelineEdit
from .storage.artifacts import ArtifactStore, MigrationResult
from .storage.catalog import MetadataCatalog
from .storage.io import ensure_extension
from .storage.location import ExternalLocationResolver, StorageLocation
from .storage.preferences import DEFAULT_MUSIC_PREFERENCE, PreferencesStore

logger = logging.getLogger(__name__)


@dataclass
class ProjectSummary:
    id: str
    name: str
    audio_ref: Optional[str]
    updated_at: int
    entry_count: int = 0
    audio_fingerprint: int = 0
    artifact_missing: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "audioRef": self.audio_ref,
            "updatedAt": self.updated_at,
            "entryCount": self.entry_count,
            "audioFingerprint": f"0x{self.audio_fingerprint:08X}",
            "artifactMissing": self.artifact_missing,
            "error": self.error,
        }


@dataclass
class ConsistencyReport:
    missing_artifacts: List[str] = field(default_factory=list)
    orphaned_artifacts: List[str] = field(default_factory=list)
    stranded: Dict[str, str] = field(default_factory=dict)

    @property
    def consistent(self) -> bool:
        return not (self.missing_artifacts or self.orphaned_artifacts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consistent": self.consistent,
            "missingArtifacts": list(self.missing_artifacts),
            "orphanedArtifacts": list(self.orphaned_artifacts),
            "stranded": dict(self.stranded),
        }


class ProjectService:
    def __init__(
        self,
        config: ServiceConfig,
        codec: Optional[ArtifactCodec] = None,
        fingerprinter: Optional[Fingerprinter] = None,
        preferences: Optional[PreferencesStore] = None,
        external_resolver: Optional[ExternalLocationResolver] = None,
        catalog: Optional[MetadataCatalog] = None,
        store: Optional[ArtifactStore] = None,
    ) -> None:
        self.config = config
        self.codec = codec or EfxCodec()
        self.fingerprinter = fingerprinter or FileFingerprinter()
        self.preferences = preferences
        self.catalog = catalog or MetadataCatalog(config.catalog_path)
        self.store = store or ArtifactStore(
            config.internal_dir,
            extension=self.codec.extension,
            external_resolver=external_resolver,
        )

        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._location_lock = threading.RLock()
        # id -> location still holding the artifact after a failed migration
        self._stranded: Dict[str, StorageLocation] = {}
        self._stranded_lock = threading.RLock()
        if preferences is not None:
            saved = preferences.load().stranded_artifacts
            self._stranded = {key: StorageLocation.from_preference(value) for key, value in saved.items()}

    @classmethod
    def from_data_dir(cls, data_dir: Path, **kwargs: Any) -> "ProjectService":
        """Build a service whose storage location comes from the saved preferences."""
        preferences = PreferencesStore(ServiceConfig(data_dir=data_dir).preferences_path)
        config = ServiceConfig.from_preferences(preferences.load(), data_dir=data_dir)
        return cls(config, preferences=preferences, **kwargs)

    @property
    def storage_location(self) -> StorageLocation:
        return self.config.storage_location

    @property
    def stranded(self) -> Dict[str, StorageLocation]:
        return dict(self._stranded)

    # Locking ---------------------------------------------------------
    def _lock_for(self, project_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = self._locks[project_id] = threading.RLock()
            return lock

    @contextmanager
    def _project_lock(self, project_id: str) -> Iterator[None]:
        lock = self._lock_for(project_id)
        timeout = self.config.lock_timeout
        acquired = lock.acquire(timeout=timeout) if timeout > 0 else lock.acquire(blocking=False)
        if not acquired:
            logger.warning(f"Project {project_id} is busy")
            raise BusyError(f"Project {project_id} is being modified by another operation")
        try:
            yield
        finally:
            lock.release()

    def _drop_lock(self, project_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(project_id, None)

    # Artifact helpers ------------------------------------------------
    def _current_directory(self) -> Path:
        return self.store.resolve_directory(self.config.storage_location)

    def _directory_for(self, project_id: str) -> Path:
        current = self._current_directory()
        stranded = self._stranded.get(project_id)
        if stranded is not None and not self.store.exists(current, project_id):
            return self.store.resolve_directory(stranded, writable=False)
        return current

    def _write_stranded(self) -> None:
        """Persist the stranded map; callers hold ``_stranded_lock``."""
        if self.preferences is not None:
            self.preferences.set_stranded(self._stranded_preferences())

    def _stranded_preferences(self) -> Dict[str, str]:
        return {key: location.to_preference() for key, location in self._stranded.items()}

    def _forget_stranded(self, project_id: str) -> Optional[StorageLocation]:
        with self._stranded_lock:
            stale = self._stranded.pop(project_id, None)
            if stale is None:
                return None
            try:
                self._write_stranded()
            except EfxError as exc:
                logger.error(f"Could not record that {project_id} left {stale.describe()}: {exc}")
        return stale

    def _delete_stale_copy(self, project_id: str, stale: StorageLocation) -> bool:
        try:
            directory = self.store.resolve_directory(stale, writable=False)
            if directory.resolve() == self._current_directory().resolve():
                return False
            removed = self.store.delete_artifact(directory, project_id)
        except EfxError as exc:
            logger.warning(f"Stale copy of {project_id} left in {stale.describe()}: {exc}")
            return False
        if removed:
            logger.info(f"Removed stale copy of {project_id} from {directory}")
        return removed

    def _load_timeline(self, project_id: str) -> Timeline:
        directory = self._directory_for(project_id)
        try:
            data = self.store.read_artifact_bytes(directory, project_id)
        except NotFoundError:
            logger.warning(f"Catalog entry {project_id} has no artifact in {directory}")
            raise
        try:
            header, entries = self.codec.decode(data)
        except CodecError as exc:
            logger.error(f"Artifact for {project_id} cannot be decoded: {exc}")
            raise
        return Timeline.from_artifact(header, entries)

    def _save_timeline(self, project_id: str, timeline: Timeline) -> None:
        data = self.codec.encode(timeline.header, timeline.entries)
        directory = self._current_directory()
        self.store.write_artifact_bytes(directory, project_id, data)

        stale = self._forget_stranded(project_id)
        if stale is not None:
            self._delete_stale_copy(project_id, stale)

    def _commit_record(self, record: ProjectRecord) -> None:
        """Write ``record`` after its artifact has already been saved."""
        try:
            self.catalog.upsert(record)
        except EfxError as exc:
            logger.error(
                f"Artifact for {record.id} was saved but the catalog update failed: {exc}"
            )
            raise InconsistentStateError(
                record.id, f"Project {record.id} saved but its catalog entry is stale: {exc}"
            ) from exc

    # Projects --------------------------------------------------------
    def list_projects(self) -> List[ProjectRecord]:
        return self.catalog.load()

    def create_project(self, default_name: Optional[str] = None) -> str:
        with self._location_lock:
            records = self.catalog.load()
            existing = {record.id for record in records}
            record = ProjectRecord(name=default_name or f"{DEFAULT_PROJECT_NAME} {len(records) + 1}")
            while record.id in existing:
                record = ProjectRecord(name=record.name)

            with self._project_lock(record.id):
                timeline = Timeline.default(self.codec.default_payload())
                self._save_timeline(record.id, timeline)
                try:
                    self.catalog.upsert(record)
                except EfxError as exc:
                    logger.error(f"Catalog update failed for new project {record.id}: {exc}")
                    self._discard_new_artifact(record.id, exc)
                    raise

        logger.info(f"Created project {record.name} ({record.id})")
        return record.id

    def _discard_new_artifact(self, project_id: str, cause: Exception) -> None:
        try:
            self.store.delete_artifact(self._current_directory(), project_id)
        except EfxError as exc:
            logger.error(f"Orphaned artifact {project_id} could not be removed: {exc}")
            raise InconsistentStateError(
                project_id, f"Artifact {project_id} has no catalog entry: {cause}"
            ) from exc

    def open_project(self, project_id: str) -> Tuple[ProjectRecord, Timeline]:
        record = self.catalog.require(project_id)
        timeline = self._load_timeline(project_id)
        logger.debug(f"Opened {record.name} ({project_id}) with {len(timeline)} entries")
        return record, timeline

    def rename_project(self, project_id: str, new_name: str) -> ProjectRecord:
        name = (new_name or "").strip()
        if not name:
            raise ValueError("Project name must not be empty")
        with self._project_lock(project_id):
            record = self.catalog.require(project_id)
            record.name = name
            record.touch()
            self.catalog.upsert(record)
        logger.info(f"Renamed project {project_id} to {name}")
        return record

    def set_audio(self, project_id: str, audio_ref: Optional[str]) -> Timeline:
        """Attach (or with ``None`` detach) the music of a project."""
        with self._project_lock(project_id):
            record = self.catalog.require(project_id)
            timeline = self._load_timeline(project_id)

            fingerprint = self.fingerprinter.fingerprint(audio_ref) if audio_ref else 0
            timeline.set_audio_fingerprint(fingerprint)
            self._save_timeline(project_id, timeline)

            record.audio_ref = audio_ref or None
            record.touch()
            self._commit_record(record)

        if audio_ref:
            logger.info(f"Music set for {project_id} with ID 0x{fingerprint:08X}")
        else:
            logger.info(f"Music removed from {project_id}")
        return timeline

    @staticmethod
    def suggest_name_from_audio(audio_ref: Optional[str]) -> Optional[str]:
        return audio_display_name(audio_ref)

    def apply_timeline_edit(self, project_id: str, edit: TimelineEdit) -> Timeline:
        with self._project_lock(project_id):
            record = self.catalog.require(project_id)
            timeline = self._load_timeline(project_id)
            timeline.apply(edit)
            self._save_timeline(project_id, timeline)
            record.touch()
            self._commit_record(record)
        logger.debug(f"Applied {edit.describe()} to {project_id}; {len(timeline)} entries")
        return timeline

    def delete_project(self, project_id: str) -> bool:
        """Delete artifact first, then the catalog entry. Safe to repeat."""
        with self._project_lock(project_id):
            removed_artifact = self.store.delete_artifact(self._current_directory(), project_id)
            stale = self._forget_stranded(project_id)
            if stale is not None:
                removed_artifact = self._delete_stale_copy(project_id, stale) or removed_artifact

            try:
                removed_record = self.catalog.remove(project_id)
            except EfxError as exc:
                logger.error(f"Artifact {project_id} deleted but catalog entry remains: {exc}")
                raise InconsistentStateError(
                    project_id, f"Project {project_id} deleted but still listed: {exc}"
                ) from exc
        self._drop_lock(project_id)

        if removed_record or removed_artifact:
            logger.info(f"Deleted project {project_id}")
        else:
            logger.debug(f"Delete of unknown project {project_id} ignored")
        return removed_record or removed_artifact

    def project_summary(self, project_id: str) -> ProjectSummary:
        record = self.catalog.require(project_id)
        summary = ProjectSummary(
            id=record.id,
            name=record.name,
            audio_ref=record.audio_ref,
            updated_at=record.updated_at,
        )
        try:
            timeline = self._load_timeline(project_id)
        except NotFoundError:
            summary.artifact_missing = True
            return summary
        except EfxError as exc:
            summary.error = str(exc)
            return summary
        summary.entry_count = len(timeline)
        summary.audio_fingerprint = timeline.audio_fingerprint
        return summary

    # Export ----------------------------------------------------------
    def export_project(self, project_id: str, target_name: str) -> bytes:
        """Current artifact bytes for hand-off under ``target_name``."""
        data = self.store.read_artifact_bytes(self._directory_for(project_id), project_id)
        logger.info(f"Prepared export of {project_id} as {target_name} ({len(data)} bytes)")
        return data

    def export_project_to(self, project_id: str, target_name: str, export_dir: Optional[Path] = None) -> Path:
        directory = Path(export_dir) if export_dir is not None else self.config.export_dir
        name = Path(target_name).name
        if not name:
            raise ValueError("Export name must not be empty")
        target = ensure_extension(directory / name, self.store.extension)
        self.store.copy_artifact(self._directory_for(project_id), project_id, target)
        logger.info(f"Exported {project_id} to {target}")
        return target

    # Storage location ------------------------------------------------
    def change_storage_location(self, new_location: StorageLocation) -> MigrationResult:
        """Move every artifact to ``new_location`` and make it current.

        The new location is recorded even when some artifacts fail to move;
        those stay readable from their old location and
        :class:`PartialMigrationError` lists them. An old location that can no
        longer be reached strands every project that lives there. Only an
        unusable ``new_location`` leaves everything as it was.
        """
        with self._location_lock:
            old_location = self.config.storage_location
            if new_location == old_location:
                logger.debug(f"Storage location unchanged ({new_location.describe()})")
                return MigrationResult()

            logger.info(f"Changing EFX storage from {old_location.describe()} to {new_location.describe()}")
            new_dir = self.store.resolve_directory(new_location)
            try:
                old_dir: Optional[Path] = self.store.resolve_directory(old_location, writable=False)
            except PathUnavailableError as exc:
                logger.error(f"Old EFX location {old_location.describe()} is unavailable: {exc}")
                old_dir = None
                reason = str(exc)
            ids = self.catalog.ids()

            with ExitStack() as stack:
                for project_id in ids:
                    stack.enter_context(self._project_lock(project_id))
                with self._stranded_lock:
                    if old_dir is not None:
                        result = self.store.migrate(old_dir, new_dir, ids)
                    else:
                        result = MigrationResult(destination=new_dir)
                        result.failed.update(
                            {project_id: reason for project_id in ids if project_id not in self._stranded}
                        )
                    stranded = {project_id: old_location for project_id in result.failed}
                    stranded.update(self._migrate_stranded(new_dir, result))
                    self._stranded = stranded
                    self.config.storage_location = new_location
                    self._persist_location(new_location)

        if result.failed:
            logger.warning(f"{len(result.failed)} artifact(s) remain in their old location")
            raise PartialMigrationError(result.failed_ids, result)
        logger.info("EFX storage path changed successfully")
        return result

    def retry_migration(self) -> MigrationResult:
        """Try again to move artifacts stranded by an earlier location change."""
        with self._location_lock:
            current = self._current_directory()
            result = MigrationResult(destination=current)
            with ExitStack() as stack:
                for project_id in list(self._stranded):
                    stack.enter_context(self._project_lock(project_id))
                with self._stranded_lock:
                    self._stranded = self._migrate_stranded(current, result)
                    self._write_stranded()

        if result.failed:
            raise PartialMigrationError(result.failed_ids, result)
        return result

    def _migrate_stranded(self, destination: Path, result: MigrationResult) -> Dict[str, StorageLocation]:
        """Move previously stranded ids to ``destination``; returns those still stranded."""
        by_location: Dict[StorageLocation, List[str]] = defaultdict(list)
        for project_id, location in self._stranded.items():
            if project_id not in result.failed:
                by_location[location].append(project_id)

        still_stranded: Dict[str, StorageLocation] = {}
        for location, ids in by_location.items():
            try:
                directory = self.store.resolve_directory(location, writable=False)
            except PathUnavailableError as exc:
                logger.warning(f"{len(ids)} stranded artifact(s) still unreachable in {location.describe()}")
                result.failed.update({project_id: str(exc) for project_id in ids})
                still_stranded.update({project_id: location for project_id in ids})
                continue
            partial = self.store.migrate(directory, destination, ids)
            result.merge(partial)
            still_stranded.update({project_id: location for project_id in partial.failed})
        return still_stranded

    def _persist_location(self, location: StorageLocation) -> None:
        if self.preferences is None:
            return
        try:
            self.preferences.save_storage_state(location, self._stranded_preferences())
        except EfxError as exc:
            logger.error(f"Storage location changed but could not be saved: {exc}")
            raise

    def music_directory(self) -> Path:
        return resolve_music_directory(self.config.music_load_path)

    def change_music_load_path(self, path: Optional[str]) -> Path:
        """Set the folder audio files are picked from; ``None`` restores the default."""
        self.config.music_load_path = path or DEFAULT_MUSIC_PREFERENCE
        if self.preferences is not None:
            self.preferences.set_music_load_path(self.config.music_load_path)
        return self.music_directory()

    def storage_info(self) -> Dict[str, Any]:
        location = self.config.storage_location
        info: Dict[str, Any] = {
            "location": location.describe(),
            "preference": location.to_preference(),
            "directory": None,
            "stranded": self._stranded_preferences(),
            "music": {
                "preference": self.config.music_load_path,
                "directory": str(self.music_directory()),
            },
        }
        try:
            info["directory"] = str(self._current_directory())
        except EfxError as exc:
            info["error"] = str(exc)
        return info

    def check_consistency(self) -> ConsistencyReport:
        """Compare catalog ids with the artifacts on disk.

        Stranded ids count as present when their old copy is still there, or
        when their old location cannot be reached to tell.
        """
        catalog_ids = set(self.catalog.ids())
        directory = self._current_directory()
        on_disk = set(self.store.list_ids(directory))
        on_disk.update(
            project_id
            for project_id, location in self._stranded.items()
            if self._stranded_copy_present(project_id, location)
        )
        report = ConsistencyReport(
            missing_artifacts=sorted(catalog_ids - on_disk),
            orphaned_artifacts=sorted(on_disk - catalog_ids),
            stranded=self._stranded_preferences(),
        )
        if not report.consistent:
            logger.warning(
                f"Catalog and {directory} disagree: {len(report.missing_artifacts)} missing, "
                f"{len(report.orphaned_artifacts)} orphaned"
            )
        return report

    def _stranded_copy_present(self, project_id: str, location: StorageLocation) -> bool:
        try:
            directory = self.store.resolve_directory(location, writable=False)
        except PathUnavailableError:
            return True
        return self.store.exists(directory, project_id)


__all__ = ["ProjectService", "ProjectSummary", "ConsistencyReport"]
