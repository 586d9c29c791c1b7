from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import json
import yaml

from simsync.change_detector import ComparePolicy
from simsync.path_filter import PathFilter, build_path_filter, patterns_for_categories
from simsync.scheduler import DEFAULT_MAX_PARALLEL_JOBS
from simsync.sync_engine import SyncOptions
from simsync.tree_walker import DEFAULT_BATCH_SIZE


@dataclass(slots=True)
class JobConfig:
    name: str
    source: Path
    target: Path
    force: bool = False
    categories: list[str] = field(default_factory=list)
    includes: list[str] = field(default_factory=list)
    excludes: list[str] | None = None
    additional_excludes: list[str] = field(default_factory=list)
    max_parallel_jobs: int = DEFAULT_MAX_PARALLEL_JOBS
    batch_size: int = DEFAULT_BATCH_SIZE
    compare_by: ComparePolicy = ComparePolicy.METADATA_THEN_HASH
    follow_symlinks: bool = False
    verify: bool = True
    create_destination: bool = True
    backup: bool = False
    backup_root: Path | None = None

    def path_filter(self) -> PathFilter:
        return build_path_filter(
            excludes=self.excludes,
            categories=self.categories,
            extra_includes=self.includes,
            additional_excludes=self.additional_excludes,
        )

    def sync_options(self, dry_run: bool = False) -> SyncOptions:
        return SyncOptions(
            force=self.force,
            dry_run=dry_run,
            max_parallel_jobs=self.max_parallel_jobs,
            batch_size=self.batch_size,
            compare_by=self.compare_by,
            follow_symlinks=self.follow_symlinks,
            verify=self.verify,
            create_destination=self.create_destination,
        )


@dataclass(slots=True)
class AppConfig:
    jobs: list[JobConfig]


def _as_path(value: Any, field_name: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string path")
    return Path(value).expanduser()


def _as_bool(value: Any, field_name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValueError(f"{field_name} must be a boolean")


def _as_positive_int(value: Any, field_name: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{field_name} must be a positive integer")
    return value


def _as_list_of_strings(value: Any, field_name: str, default: list[str] | None = None) -> list[str]:
    if value is None:
        return list(default or [])
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise ValueError(f"{field_name} must be a list of strings")
    return [item for item in value if item.strip()]


def _load_raw_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ValueError(f"Config file does not exist: {config_path}")

    suffix = config_path.suffix.lower()
    text = config_path.read_text(encoding="utf-8")
    if suffix in {".yml", ".yaml"}:
        loaded = yaml.safe_load(text)
    elif suffix == ".json":
        loaded = json.loads(text)
    else:
        raise ValueError("Config file must be .yaml/.yml or .json")

    if not isinstance(loaded, dict):
        raise ValueError("Config root must be an object")
    return loaded


def _parse_job(raw_job: Any, index: int) -> JobConfig:
    prefix = f"jobs[{index}]"
    if not isinstance(raw_job, dict):
        raise ValueError(f"{prefix} must be an object")

    name = raw_job.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"{prefix}.name must be a non-empty string")

    categories = _as_list_of_strings(raw_job.get("categories"), f"{prefix}.categories")
    try:
        patterns_for_categories(categories)
    except ValueError as exc:
        raise ValueError(f"{prefix}.categories: {exc}") from exc

    compare_by = raw_job.get("compareBy", ComparePolicy.METADATA_THEN_HASH.value)
    try:
        compare_policy = ComparePolicy(compare_by)
    except ValueError:
        allowed = ", ".join(policy.value for policy in ComparePolicy)
        raise ValueError(f"{prefix}.compareBy must be one of: {allowed}") from None

    raw_excludes = raw_job.get("excludes")
    excludes = None if raw_excludes is None else _as_list_of_strings(raw_excludes, f"{prefix}.excludes")

    raw_backup_root = raw_job.get("backupRoot")
    backup_root = _as_path(raw_backup_root, f"{prefix}.backupRoot") if raw_backup_root else None

    job = JobConfig(
        name=name,
        source=_as_path(raw_job.get("source"), f"{prefix}.source"),
        target=_as_path(raw_job.get("target"), f"{prefix}.target"),
        force=_as_bool(raw_job.get("force"), f"{prefix}.force", default=False),
        categories=categories,
        includes=_as_list_of_strings(raw_job.get("includes"), f"{prefix}.includes"),
        excludes=excludes,
        additional_excludes=_as_list_of_strings(
            raw_job.get("additionalExcludes"), f"{prefix}.additionalExcludes"
        ),
        max_parallel_jobs=_as_positive_int(
            raw_job.get("maxParallelJobs"), f"{prefix}.maxParallelJobs", default=DEFAULT_MAX_PARALLEL_JOBS
        ),
        batch_size=_as_positive_int(raw_job.get("batchSize"), f"{prefix}.batchSize", default=DEFAULT_BATCH_SIZE),
        compare_by=compare_policy,
        follow_symlinks=_as_bool(raw_job.get("followSymlinks"), f"{prefix}.followSymlinks", default=False),
        verify=_as_bool(raw_job.get("verify"), f"{prefix}.verify", default=True),
        create_destination=_as_bool(
            raw_job.get("createDestination"), f"{prefix}.createDestination", default=True
        ),
        backup=_as_bool(raw_job.get("backup"), f"{prefix}.backup", default=False),
        backup_root=backup_root,
    )

    try:
        job.path_filter()
    except ValueError as exc:
        raise ValueError(f"{prefix} patterns (excludes/additionalExcludes/includes): {exc}") from exc
    return job


def load_config(config_path: Path) -> AppConfig:
    raw = _load_raw_config(config_path)
    raw_jobs = raw.get("jobs")
    if not isinstance(raw_jobs, list) or not raw_jobs:
        raise ValueError("Config must contain non-empty 'jobs' list")

    jobs: list[JobConfig] = []
    names: set[str] = set()

    for index, raw_job in enumerate(raw_jobs):
        job = _parse_job(raw_job, index)
        if job.name in names:
            raise ValueError(f"Duplicate job name: {job.name}")
        names.add(job.name)
        jobs.append(job)

    return AppConfig(jobs=jobs)


def get_jobs(config: AppConfig, job_name: str | None) -> list[JobConfig]:
    if not job_name:
        return config.jobs
    matched = [job for job in config.jobs if job.name == job_name]
    if not matched:
        raise ValueError(f"No job named '{job_name}' found")
    return matched
