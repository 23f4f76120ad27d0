"""Error taxonomy shared by the timeline engine, storage layer and service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .storage.artifacts import MigrationResult


class EfxError(Exception):
    """Base class; ``code`` is the machine-readable category."""

    code = "ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(EfxError):
    code = "NOT_FOUND"


class OutOfRangeError(EfxError, IndexError):
    code = "OUT_OF_RANGE"


class PathUnavailableError(EfxError):
    code = "PATH_UNAVAILABLE"


class WriteFailedError(EfxError):
    code = "WRITE_FAILED"


class ReadFailedError(EfxError):
    code = "READ_FAILED"


class BusyError(EfxError):
    code = "BUSY"


class CodecError(EfxError):
    code = "CODEC_ERROR"


class InconsistentStateError(EfxError):
    """Catalog and artifact store disagree after a half-applied operation."""

    code = "INCONSISTENT_STATE"

    def __init__(self, project_id: str, message: str):
        super().__init__(message)
        self.project_id = project_id


class PartialMigrationError(EfxError):
    code = "PARTIAL_MIGRATION"

    def __init__(self, failed_ids: Iterable[str], result: "Optional[MigrationResult]" = None):
        self.failed_ids: List[str] = sorted(failed_ids)
        self.result = result
        super().__init__(
            f"{len(self.failed_ids)} artifact(s) could not be moved: {', '.join(self.failed_ids)}"
        )


# Process exit codes used by the command line front end.
ERROR_CODES = {
    "ERROR": 1,
    "INVALID_INPUT": 2,
    "NOT_FOUND": 3,
    "OUT_OF_RANGE": 4,
    "PATH_UNAVAILABLE": 5,
    "READ_FAILED": 6,
    "WRITE_FAILED": 7,
    "BUSY": 8,
    "CODEC_ERROR": 9,
    "INCONSISTENT_STATE": 10,
    "PARTIAL_MIGRATION": 11,
}

RETRYABLE_CODES = frozenset({"BUSY", "PARTIAL_MIGRATION", "WRITE_FAILED", "INCONSISTENT_STATE"})


__all__ = [
    "EfxError",
    "NotFoundError",
    "OutOfRangeError",
    "PathUnavailableError",
    "WriteFailedError",
    "ReadFailedError",
    "BusyError",
    "CodecError",
    "InconsistentStateError",
    "PartialMigrationError",
    "ERROR_CODES",
    "RETRYABLE_CODES",
]
