from __future__ import annotations

from dataclasses import dataclass, field
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable

from simsync.backup import backup_destination
from simsync.config import JobConfig, get_jobs, load_config
from simsync.models import SyncEvent
from simsync.sync_engine import PreconditionError, SyncReport, sync_tree


EXIT_SUCCESS = 0
EXIT_PRECONDITION_FAILED = 1
EXIT_INVALID_CONFIG = 3

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


@dataclass(slots=True)
class JobResult:
    job: JobConfig
    report: SyncReport | None = None
    error: str | None = None


@dataclass(slots=True)
class RunSummary:
    processed: int = 0
    copied: int = 0
    skipped: int = 0
    errored: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    missing: int = 0
    extra: int = 0
    config_error: str | None = None
    results: list[JobResult] = field(default_factory=list)

    def absorb(self, job: JobConfig, report: SyncReport) -> None:
        stats = report.statistics
        self.processed += stats.processed
        self.copied += stats.copied
        self.skipped += stats.skipped
        self.errored += stats.errored
        self.completed_jobs += 1
        if report.verification is not None:
            self.missing += len(report.verification.missing)
            self.extra += len(report.verification.extra)
        self.results.append(JobResult(job=job, report=report))

    def fail(self, job: JobConfig, error: str) -> None:
        self.failed_jobs += 1
        self.results.append(JobResult(job=job, error=error))


def configure_logging(log_file: Path | None = None, verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger("simsync")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def run_job(
    job: JobConfig,
    dry_run: bool = False,
    on_event: Callable[[SyncEvent], None] | None = None,
    logger: logging.Logger | None = None,
) -> SyncReport:
    log = logger or logging.getLogger("simsync.run")

    if job.backup and not dry_run:
        backup_path = backup_destination(job.target, job.backup_root)
        if backup_path is not None:
            log.info("[%s] backup written to %s", job.name, backup_path)

    report = sync_tree(
        job.source,
        job.target,
        job.path_filter(),
        job.sync_options(dry_run=dry_run),
        on_event=on_event,
    )

    if report.verification is not None and not report.verification.consistent:
        log.warning(
            "[%s] structure check: %s missing, %s extra",
            job.name,
            len(report.verification.missing),
            len(report.verification.extra),
        )
    return report


def run_jobs(
    jobs: list[JobConfig],
    dry_run: bool = False,
    on_event: Callable[[SyncEvent], None] | None = None,
    logger: logging.Logger | None = None,
) -> tuple[int, RunSummary]:
    log = logger or logging.getLogger("simsync.run")
    summary = RunSummary()

    for job in jobs:
        try:
            report = run_job(job, dry_run=dry_run, on_event=on_event, logger=log)
        except PreconditionError as exc:
            summary.fail(job, str(exc))
            log.error("[%s] cannot run: %s", job.name, exc)
            continue

        summary.absorb(job, report)
        stats = report.statistics
        log.info(
            "[%s] %s -> %s | processed=%s copied=%s skipped=%s errored=%s",
            job.name,
            job.source,
            job.target,
            stats.processed,
            stats.copied,
            stats.skipped,
            stats.errored,
        )

    exit_code = EXIT_PRECONDITION_FAILED if summary.failed_jobs else EXIT_SUCCESS
    return exit_code, summary


def run_sync_jobs(
    config_path: Path,
    job_name: str | None = None,
    dry_run: bool = False,
    on_event: Callable[[SyncEvent], None] | None = None,
    logger: logging.Logger | None = None,
) -> tuple[int, RunSummary]:
    log = logger or logging.getLogger("simsync.run")

    try:
        config = load_config(config_path)
        jobs = get_jobs(config, job_name)
    except Exception as exc:
        log.error("Config error: %s", exc)
        return EXIT_INVALID_CONFIG, RunSummary(config_error=str(exc))

    return run_jobs(jobs, dry_run=dry_run, on_event=on_event, logger=log)
