from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class TransferDecision(str, Enum):
    SKIP_BLACKLISTED = "skip-blacklisted"
    SKIP_NOT_INCLUDED = "skip-not-included"
    SKIP_IDENTICAL = "skip-identical"
    COPY = "copy"


class EventKind(str, Enum):
    SKIP_BLACKLISTED = "skip-blacklisted"
    SKIP_NOT_INCLUDED = "skip-not-included"
    SKIP_IDENTICAL = "skip-identical"
    COPY_SUCCESS = "copy-success"
    COPY_FAILURE = "copy-failure"
    DIRECTORY_CREATED = "directory-created"
    DIRECTORY_ERROR = "directory-error"


@dataclass(frozen=True, slots=True)
class FileEntry:
    path: Path
    relative_path: str
    size: int
    mtime: float


@dataclass(frozen=True, slots=True)
class PendingJob:
    source: Path
    destination: Path
    relative_path: str
    overwrite: bool = False


@dataclass(frozen=True, slots=True)
class TransferOutcome:
    relative_path: str
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class FileError:
    relative_path: str
    message: str


@dataclass(frozen=True, slots=True)
class RunStatistics:
    processed: int = 0
    skipped: int = 0
    copied: int = 0
    errored: int = 0
    errors: tuple[FileError, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class SyncEvent:
    kind: EventKind
    relative_path: str
    message: str = ""
