"""Domain models for efxforge - pure Python, no I/O."""

from __future__ import annotations

from .record import DEFAULT_PROJECT_NAME, ProjectRecord
from .timeline import (
    AddEntry,
    DeleteEntry,
    ProjectHeader,
    Timeline,
    TimelineEdit,
    TimelineEntry,
    UpdateEntry,
)

__all__ = [
    "DEFAULT_PROJECT_NAME",
    "ProjectRecord",
    "ProjectHeader",
    "Timeline",
    "TimelineEntry",
    "TimelineEdit",
    "AddEntry",
    "UpdateEntry",
    "DeleteEntry",
]
