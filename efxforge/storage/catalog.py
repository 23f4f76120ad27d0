"""Metadata catalog: every project record in one JSON document."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import NotFoundError, ReadFailedError, WriteFailedError
from ..models.record import ProjectRecord
from .io import PathLike, load_json, save_json

logger = logging.getLogger(__name__)

CATALOG_FILENAME = "efx_projects_metadata.json"


class MetadataCatalog:
    """Reads and rewrites the catalog file as a whole.

    All access goes through one lock, so a save never interleaves with
    another read-modify-write cycle. Saves are atomic (temp file + rename).
    """

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def load(self) -> List[ProjectRecord]:
        with self._lock:
            if not self.path.exists():
                logger.debug(f"Catalog {self.path} does not exist yet")
                return []
            try:
                data = load_json(self.path)
            except (OSError, ValueError) as exc:
                logger.error(f"Cannot read catalog {self.path}: {exc}")
                raise ReadFailedError(f"Cannot read catalog {self.path}: {exc}") from exc
            if not isinstance(data, list):
                raise ReadFailedError(f"Catalog {self.path} is not a JSON array")

            records: List[ProjectRecord] = []
            seen: Dict[str, ProjectRecord] = {}
            for item in data:
                try:
                    record = ProjectRecord.from_dict(item)
                except (AttributeError, KeyError, TypeError, ValueError) as exc:
                    raise ReadFailedError(f"Malformed catalog record {item!r}: {exc}") from exc
                if record.id in seen:
                    logger.warning(f"Duplicate catalog id {record.id}; keeping the first record")
                    continue
                seen[record.id] = record
                records.append(record)
            logger.debug(f"Loaded {len(records)} projects from {self.path}")
            return records

    def save(self, records: List[ProjectRecord]) -> None:
        with self._lock:
            try:
                save_json(self.path, [record.to_dict() for record in records])
            except OSError as exc:
                logger.error(f"Cannot write catalog {self.path}: {exc}")
                raise WriteFailedError(f"Cannot write catalog {self.path}: {exc}") from exc
            logger.debug(f"Saved {len(records)} projects to {self.path}")

    def get(self, project_id: str) -> Optional[ProjectRecord]:
        for record in self.load():
            if record.id == project_id:
                return record
        return None

    def require(self, project_id: str) -> ProjectRecord:
        record = self.get(project_id)
        if record is None:
            raise NotFoundError(f"Project {project_id} is not in the catalog")
        return record

    def ids(self) -> List[str]:
        return [record.id for record in self.load()]

    def upsert(self, record: ProjectRecord) -> None:
        """Replace the record with the same id, or append it."""
        with self._lock:
            records = self.load()
            for index, existing in enumerate(records):
                if existing.id == record.id:
                    records[index] = record
                    logger.debug(f"Updated catalog record {record.id}")
                    break
            else:
                records.append(record)
                logger.debug(f"Added catalog record {record.id}")
            self.save(records)

    def remove(self, project_id: str) -> bool:
        with self._lock:
            records = self.load()
            remaining = [record for record in records if record.id != project_id]
            if len(remaining) == len(records):
                return False
            self.save(remaining)
            logger.debug(f"Removed catalog record {project_id}")
            return True

    def __len__(self) -> int:
        return len(self.load())


__all__ = ["MetadataCatalog", "CATALOG_FILENAME"]
