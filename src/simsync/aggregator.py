from __future__ import annotations

import threading

from simsync.models import FileError, RunStatistics


def describe_error(error: str | BaseException) -> str:
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return error


class ResultAggregator:
    """Run counters shared by the traversal loop and every copy worker.

    Each record call bumps ``processed`` and exactly one outcome counter under
    a single lock, so a snapshot never shows a file counted twice.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processed = 0
        self._skipped = 0
        self._copied = 0
        self._errored = 0
        self._errors: list[FileError] = []

    def record_skip(self) -> None:
        with self._lock:
            self._processed += 1
            self._skipped += 1

    def record_copy_success(self, relative_path: str) -> None:
        with self._lock:
            self._processed += 1
            self._copied += 1

    def record_copy_failure(self, relative_path: str, error: str | BaseException) -> None:
        message = describe_error(error)
        with self._lock:
            self._processed += 1
            self._errored += 1
            self._errors.append(FileError(relative_path=relative_path, message=message))

    def snapshot(self) -> RunStatistics:
        with self._lock:
            return RunStatistics(
                processed=self._processed,
                skipped=self._skipped,
                copied=self._copied,
                errored=self._errored,
                errors=tuple(self._errors),
            )
