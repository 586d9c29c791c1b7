from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
import logging
from pathlib import Path
import shutil
import tempfile
import threading
from typing import Callable

from simsync.aggregator import ResultAggregator, describe_error
from simsync.models import EventKind, PendingJob, SyncEvent, TransferOutcome


DEFAULT_MAX_PARALLEL_JOBS = 4

EventCallback = Callable[[SyncEvent], None]

log = logging.getLogger("simsync.scheduler")


def _ensure_parent(destination_file: Path) -> bool:
    parent = destination_file.parent
    if parent.is_dir():
        return False
    try:
        parent.mkdir(parents=True)
    except FileExistsError:
        # Another worker created it first.
        if not parent.is_dir():
            raise
        return False
    return True


def copy_file(source_file: Path, destination_file: Path, overwrite: bool) -> bool:
    """Copy one file into place and return True if its parent directory was created."""
    created_parent = _ensure_parent(destination_file)

    if not overwrite and destination_file.exists():
        raise FileExistsError(f"Destination exists and overwrite is disabled: {destination_file}")

    with tempfile.NamedTemporaryFile(
        delete=False, dir=str(destination_file.parent), prefix=".simsync-", suffix=".tmp"
    ) as tmp:
        tmp_path = Path(tmp.name)
    try:
        shutil.copy2(source_file, tmp_path)
        tmp_path.replace(destination_file)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
    return created_parent


class TransferScheduler:
    """Bounded pool of copy workers.

    ``submit`` blocks while ``max_parallel_jobs`` copies are in flight, so the
    traversal loop never queues more work than the pool can run. ``drain``
    is the barrier after which the aggregator snapshot is final.
    """

    def __init__(
        self,
        aggregator: ResultAggregator,
        max_parallel_jobs: int = DEFAULT_MAX_PARALLEL_JOBS,
        dry_run: bool = False,
        on_event: EventCallback | None = None,
    ) -> None:
        if max_parallel_jobs < 1:
            raise ValueError("max_parallel_jobs must be at least 1")
        self.max_parallel_jobs = max_parallel_jobs
        self.dry_run = dry_run
        self._aggregator = aggregator
        self._on_event = on_event
        self._slots = threading.BoundedSemaphore(max_parallel_jobs)
        self._lock = threading.Lock()
        self._in_flight: set[Future[TransferOutcome]] = set()
        self._outcomes: list[TransferOutcome] = []
        self._executor: ThreadPoolExecutor | None = None
        if not dry_run:
            self._executor = ThreadPoolExecutor(
                max_workers=max_parallel_jobs, thread_name_prefix="simsync-copy"
            )

    def __enter__(self) -> "TransferScheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _emit(self, kind: EventKind, relative_path: str, message: str = "") -> None:
        if self._on_event is not None:
            self._on_event(SyncEvent(kind=kind, relative_path=relative_path, message=message))

    def _record(self, outcome: TransferOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def _run(self, job: PendingJob) -> TransferOutcome:
        try:
            created_parent = copy_file(job.source, job.destination, job.overwrite)
        except Exception as exc:
            message = describe_error(exc)
            outcome = TransferOutcome(relative_path=job.relative_path, success=False, error=message)
            self._aggregator.record_copy_failure(job.relative_path, message)
            self._record(outcome)
            self._emit(EventKind.COPY_FAILURE, job.relative_path, message)
            return outcome

        outcome = TransferOutcome(relative_path=job.relative_path, success=True)
        self._aggregator.record_copy_success(job.relative_path)
        self._record(outcome)
        if created_parent:
            self._emit(EventKind.DIRECTORY_CREATED, job.relative_path, str(job.destination.parent))
        self._emit(EventKind.COPY_SUCCESS, job.relative_path)
        return outcome

    def _finished(self, future: Future[TransferOutcome]) -> None:
        with self._lock:
            self._in_flight.discard(future)
        self._slots.release()
        if not future.cancelled() and future.exception() is not None:
            log.error("Copy worker crashed: %s", future.exception())

    def submit(self, job: PendingJob) -> None:
        if self._executor is None:
            outcome = TransferOutcome(relative_path=job.relative_path, success=True)
            self._aggregator.record_copy_success(job.relative_path)
            self._record(outcome)
            self._emit(EventKind.COPY_SUCCESS, job.relative_path, "dry run")
            return

        self._slots.acquire()
        try:
            future = self._executor.submit(self._run, job)
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._finished)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def drain(self) -> list[TransferOutcome]:
        with self._lock:
            pending = list(self._in_flight)
        if pending:
            wait(pending)
        with self._lock:
            return list(self._outcomes)

    def close(self) -> None:
        self.drain()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
