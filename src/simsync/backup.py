from __future__ import annotations

from datetime import datetime
import logging
from pathlib import Path
import shutil

from simsync.sync_engine import PreconditionError


log = logging.getLogger("simsync.backup")


def backup_name(destination_root: Path, now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return f"{destination_root.name}.backup-{stamp}"


def backup_destination(
    destination_root: Path,
    backup_root: Path | None = None,
    now: datetime | None = None,
) -> Path | None:
    """Copy an existing destination tree aside before it is overwritten.

    Returns the backup directory, or None when the destination is missing or
    empty. Any failure is fatal for the run because the caller asked for a
    safety copy that could not be made.
    """
    destination_root = Path(destination_root)
    if not destination_root.is_dir() or not any(destination_root.iterdir()):
        return None

    parent = Path(backup_root) if backup_root is not None else destination_root.parent
    backup_path = parent / backup_name(destination_root, now)
    if backup_path.exists():
        raise PreconditionError(f"Backup directory already exists: {backup_path}")

    try:
        parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(destination_root, backup_path, symlinks=True)
    except OSError as exc:
        raise PreconditionError(f"Cannot back up {destination_root} to {backup_path}: {exc}") from exc

    log.info("Backed up %s to %s", destination_root, backup_path)
    return backup_path
