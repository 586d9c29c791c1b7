from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Callable

from simsync.aggregator import ResultAggregator
from simsync.change_detector import ChangeDetector, ComparePolicy
from simsync.models import (
    EventKind,
    FileEntry,
    PendingJob,
    RunStatistics,
    SyncEvent,
    TransferDecision,
    TransferOutcome,
)
from simsync.path_filter import PathFilter
from simsync.scheduler import DEFAULT_MAX_PARALLEL_JOBS, TransferScheduler
from simsync.tree_walker import DEFAULT_BATCH_SIZE, TreeWalker, effective_batch_size
from simsync.verifier import StructureVerifier, VerificationReport


log = logging.getLogger("simsync.engine")

_EVENT_LEVELS = {
    EventKind.SKIP_BLACKLISTED: logging.DEBUG,
    EventKind.SKIP_NOT_INCLUDED: logging.DEBUG,
    EventKind.SKIP_IDENTICAL: logging.DEBUG,
    EventKind.COPY_SUCCESS: logging.INFO,
    EventKind.DIRECTORY_CREATED: logging.INFO,
    EventKind.COPY_FAILURE: logging.WARNING,
    EventKind.DIRECTORY_ERROR: logging.WARNING,
}

_SKIP_EVENTS = {
    TransferDecision.SKIP_BLACKLISTED: EventKind.SKIP_BLACKLISTED,
    TransferDecision.SKIP_NOT_INCLUDED: EventKind.SKIP_NOT_INCLUDED,
    TransferDecision.SKIP_IDENTICAL: EventKind.SKIP_IDENTICAL,
}


class PreconditionError(ValueError):
    """Raised when a run cannot start without leaving the destination undefined."""


@dataclass(slots=True)
class SyncOptions:
    force: bool = False
    dry_run: bool = False
    max_parallel_jobs: int = DEFAULT_MAX_PARALLEL_JOBS
    batch_size: int = DEFAULT_BATCH_SIZE
    adaptive_batching: bool = True
    compare_by: ComparePolicy = ComparePolicy.METADATA_THEN_HASH
    follow_symlinks: bool = False
    verify: bool = True
    create_destination: bool = True


@dataclass(slots=True)
class SyncReport:
    statistics: RunStatistics
    outcomes: list[TransferOutcome] = field(default_factory=list)
    verification: VerificationReport | None = None


def log_event(event: SyncEvent, logger: logging.Logger = log) -> None:
    level = _EVENT_LEVELS.get(event.kind, logging.INFO)
    if event.message:
        logger.log(level, "%s %s (%s)", event.kind.value, event.relative_path, event.message)
    else:
        logger.log(level, "%s %s", event.kind.value, event.relative_path)


def _validate_paths(source_root: Path, destination_root: Path) -> None:
    if not source_root.exists() or not source_root.is_dir():
        raise PreconditionError(f"Source directory does not exist or is not a directory: {source_root}")

    source_resolved = source_root.resolve()
    destination_resolved = destination_root.resolve()

    if source_resolved == destination_resolved:
        raise PreconditionError(f"Source and destination are the same directory: {source_root}")

    if destination_resolved.is_relative_to(source_resolved):
        raise PreconditionError(
            f"Destination is inside source, which would recurse: {destination_root}"
        )

    if destination_root.exists() and not destination_root.is_dir():
        raise PreconditionError(f"Destination exists and is not a directory: {destination_root}")


def _prepare_destination(destination_root: Path, dry_run: bool, create: bool) -> None:
    if destination_root.is_dir():
        return
    if not create:
        raise PreconditionError(f"Destination directory does not exist: {destination_root}")
    if dry_run:
        return
    try:
        destination_root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PreconditionError(f"Cannot create destination directory {destination_root}: {exc}") from exc


def _relative_or_absolute(root: Path, path: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def sync_tree(
    source_root: Path,
    destination_root: Path,
    path_filter: PathFilter,
    options: SyncOptions | None = None,
    on_event: Callable[[SyncEvent], None] | None = None,
) -> SyncReport:
    """Copy new and changed files from ``source_root`` into ``destination_root``.

    Every file under the source is recorded exactly once in the returned
    statistics: as a skip (filtered out or identical), a copy or an error.
    Per-file and per-directory problems never abort the run; only the
    preconditions raise ``PreconditionError``.
    """
    options = options or SyncOptions()
    source_root = Path(source_root)
    destination_root = Path(destination_root)

    _validate_paths(source_root, destination_root)
    _prepare_destination(destination_root, options.dry_run, options.create_destination)

    def emit(kind: EventKind, relative_path: str, message: str = "") -> None:
        event = SyncEvent(kind=kind, relative_path=relative_path, message=message)
        log_event(event)
        if on_event is not None:
            on_event(event)

    def forward(event: SyncEvent) -> None:
        emit(event.kind, event.relative_path, event.message)

    aggregator = ResultAggregator()
    detector = ChangeDetector(options.compare_by)

    def on_walk_error(path: Path, exc: OSError, is_dir: bool) -> None:
        relative_path = _relative_or_absolute(source_root, path)
        if is_dir:
            emit(EventKind.DIRECTORY_ERROR, relative_path, str(exc))
            return
        aggregator.record_copy_failure(relative_path, exc)
        emit(EventKind.COPY_FAILURE, relative_path, str(exc))

    batch_size = options.batch_size
    if options.adaptive_batching:
        # Unreadable directories are reported once, by the real walk below.
        counter = TreeWalker(follow_symlinks=options.follow_symlinks, error_level=logging.DEBUG)
        estimate = counter.count_files(source_root)
        batch_size = effective_batch_size(estimate, options.batch_size)
        log.debug("Estimated %s files under %s, batch size %s", estimate, source_root, batch_size)

    walker = TreeWalker(
        batch_size=batch_size,
        follow_symlinks=options.follow_symlinks,
        on_error=on_walk_error,
    )

    def process(entry: FileEntry, scheduler: TransferScheduler) -> None:
        decision = path_filter.classify(entry.relative_path)
        if decision is None:
            destination_file = destination_root / entry.relative_path
            try:
                decision = detector.decide(entry, destination_file)
            except OSError as exc:
                aggregator.record_copy_failure(entry.relative_path, exc)
                emit(EventKind.COPY_FAILURE, entry.relative_path, str(exc))
                return
            if decision is TransferDecision.COPY:
                scheduler.submit(
                    PendingJob(
                        source=entry.path,
                        destination=destination_file,
                        relative_path=entry.relative_path,
                        overwrite=options.force,
                    )
                )
                return

        aggregator.record_skip()
        emit(_SKIP_EVENTS[decision], entry.relative_path)

    with TransferScheduler(
        aggregator,
        max_parallel_jobs=options.max_parallel_jobs,
        dry_run=options.dry_run,
        on_event=forward,
    ) as scheduler:
        for batch in walker.batches(source_root):
            for entry in batch:
                process(entry, scheduler)
        outcomes = scheduler.drain()

    report = SyncReport(statistics=aggregator.snapshot(), outcomes=outcomes)

    if options.verify and not options.dry_run:
        verifier = StructureVerifier(path_filter, TreeWalker(follow_symlinks=options.follow_symlinks))
        report.verification = verifier.verify(source_root, destination_root)

    stats = report.statistics
    log.info(
        "%s -> %s | processed=%s copied=%s skipped=%s errored=%s%s",
        source_root,
        destination_root,
        stats.processed,
        stats.copied,
        stats.skipped,
        stats.errored,
        " (dry run)" if options.dry_run else "",
    )
    return report
