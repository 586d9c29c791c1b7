from __future__ import annotations

import argparse
from pathlib import Path
import sys

from simsync.change_detector import ComparePolicy
from simsync.config import JobConfig, get_jobs, load_config
from simsync.path_filter import CATEGORIES, DEFAULT_EXCLUDES, patterns_for_categories
from simsync.run_service import (
    EXIT_INVALID_CONFIG,
    EXIT_PRECONDITION_FAILED,
    EXIT_SUCCESS,
    RunSummary,
    configure_logging,
    run_jobs,
    run_sync_jobs,
)
from simsync.scheduler import DEFAULT_MAX_PARALLEL_JOBS
from simsync.sync_engine import SyncReport
from simsync.tree_walker import DEFAULT_BATCH_SIZE


def _add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--log-file", type=Path, default=None, help="Also write a rotating log file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every file decision")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="simsync", description="Copy new and changed game user data")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Synchronize one source tree into a target")
    sync_parser.add_argument("source", type=Path)
    sync_parser.add_argument("target", type=Path)
    sync_parser.add_argument("--force", action="store_true", help="Overwrite changed files at the target")
    sync_parser.add_argument("--dry-run", action="store_true")
    sync_parser.add_argument(
        "--category",
        action="append",
        default=[],
        choices=sorted(CATEGORIES),
        help="Only synchronize this part of the tree (repeatable)",
    )
    sync_parser.add_argument("--include", action="append", default=[], help="Extra include pattern")
    sync_parser.add_argument(
        "--exclude",
        action="append",
        default=None,
        help="Exclude pattern; replaces the default exclude list (repeatable)",
    )
    sync_parser.add_argument("--jobs", type=int, default=DEFAULT_MAX_PARALLEL_JOBS, help="Parallel copies")
    sync_parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    sync_parser.add_argument(
        "--compare-by",
        choices=[policy.value for policy in ComparePolicy],
        default=ComparePolicy.METADATA_THEN_HASH.value,
    )
    sync_parser.add_argument("--follow-symlinks", action="store_true")
    sync_parser.add_argument("--no-verify", action="store_true", help="Skip the structure check")
    sync_parser.add_argument(
        "--no-create", action="store_true", help="Fail instead of creating a missing target"
    )
    sync_parser.add_argument("--backup", action="store_true", help="Back up the target before syncing")
    _add_logging_args(sync_parser)

    run_parser = subparsers.add_parser("run", help="Run configured jobs")
    run_parser.add_argument("--config", required=True, type=Path)
    run_parser.add_argument("--job", help="Run only one job by name")
    run_parser.add_argument("--dry-run", action="store_true")
    _add_logging_args(run_parser)

    validate_parser = subparsers.add_parser("validate-config", help="Validate config")
    validate_parser.add_argument("--config", required=True, type=Path)

    list_parser = subparsers.add_parser("list", help="List jobs and their source/target mappings")
    list_parser.add_argument("--config", required=True, type=Path)
    list_parser.add_argument("--job", help="List only one job by name")

    subparsers.add_parser("categories", help="Show category names and default excludes")

    return parser


def _print_report(job: JobConfig, report: SyncReport, dry_run: bool) -> None:
    stats = report.statistics
    suffix = " (dry run)" if dry_run else ""
    print(
        f"[{job.name}] {job.source} -> {job.target} | processed={stats.processed} "
        f"copied={stats.copied} skipped={stats.skipped} errored={stats.errored}{suffix}"
    )
    for error in stats.errors:
        print(f"  error: {error.relative_path}: {error.message}", file=sys.stderr)
    if report.verification is not None:
        for rel in report.verification.missing:
            print(f"  missing at target: {rel}")
        for rel in report.verification.extra:
            print(f"  only at target: {rel}")


def _print_summary(summary: RunSummary, dry_run: bool) -> None:
    # Config and precondition errors reach stderr through the console log handler.
    for result in summary.results:
        if result.report is not None:
            _print_report(result.job, result.report, dry_run)


def cmd_sync(args: argparse.Namespace) -> int:
    if args.jobs < 1 or args.batch_size < 1:
        print("--jobs and --batch-size must be at least 1", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    job = JobConfig(
        name="sync",
        source=args.source.expanduser(),
        target=args.target.expanduser(),
        force=args.force,
        categories=list(args.category),
        includes=list(args.include),
        excludes=args.exclude,
        max_parallel_jobs=args.jobs,
        batch_size=args.batch_size,
        compare_by=ComparePolicy(args.compare_by),
        follow_symlinks=args.follow_symlinks,
        verify=not args.no_verify,
        create_destination=not args.no_create,
        backup=args.backup,
    )
    try:
        job.path_filter()
    except ValueError as exc:
        print(f"Invalid filter: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    configure_logging(args.log_file, verbose=args.verbose)
    exit_code, summary = run_jobs([job], dry_run=args.dry_run)
    _print_summary(summary, args.dry_run)
    return exit_code


def cmd_run(args: argparse.Namespace) -> int:
    configure_logging(args.log_file, verbose=args.verbose)
    exit_code, summary = run_sync_jobs(args.config, job_name=args.job, dry_run=args.dry_run)
    _print_summary(summary, args.dry_run)
    return exit_code


def cmd_validate(config_path: Path) -> int:
    try:
        config = load_config(config_path)
    except Exception as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    print(f"Valid config: {config_path} ({len(config.jobs)} job(s))")
    for job in config.jobs:
        categories = ",".join(job.categories) or "all"
        print(
            f"  - job={job.name} "
            f"categories={categories} "
            f"force={str(job.force).lower()} "
            f"maxParallelJobs={job.max_parallel_jobs}"
        )
    return EXIT_SUCCESS


def cmd_list(config_path: Path, job_name: str | None) -> int:
    try:
        config = load_config(config_path)
        jobs = get_jobs(config, job_name)
    except Exception as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    for job in jobs:
        print(f"job: {job.name} (compareBy={job.compare_by.value})")
        print(f"  - {job.source} -> {job.target}")
        path_filter = job.path_filter()
        if path_filter.include_patterns:
            print(f"    include: {' '.join(path_filter.include_patterns)}")
    return EXIT_SUCCESS


def cmd_categories() -> int:
    for name in sorted(CATEGORIES):
        print(f"{name}: {' '.join(patterns_for_categories([name]))}")
    print(f"default excludes: {' '.join(DEFAULT_EXCLUDES)}")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "sync":
        return cmd_sync(args)
    if args.command == "run":
        return cmd_run(args)
    if args.command == "validate-config":
        return cmd_validate(args.config)
    if args.command == "list":
        return cmd_list(args.config, args.job)
    if args.command == "categories":
        return cmd_categories()

    parser.print_help()
    return EXIT_PRECONDITION_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
