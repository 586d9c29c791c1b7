import logging
import os
from pathlib import Path

import pytest

from simsync.models import EventKind
from simsync.path_filter import DEFAULT_EXCLUDES, PathFilter, build_path_filter
from simsync.sync_engine import PreconditionError, SyncOptions, sync_tree


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _ten_file_tree(root: Path) -> None:
    _write(root / "Saves" / "slot1.save", "slot one")
    _write(root / "Saves" / "slot1.save.ver0", "slot one v0")
    _write(root / "Saves" / "slot2.save", "slot two")
    _write(root / "Mods" / "foo.package", "foo")
    _write(root / "Mods" / "Scripts" / "bar.ts4script", "bar")
    _write(root / "Tray" / "0x1.trayitem", "lot")
    _write(root / "Tray" / "0x1.blueprint", "blueprint")
    _write(root / "Screenshots" / "shot.png", "png")
    _write(root / "Options.ini", "[options]")
    _write(root / "Custom Music" / "song.mp3", "song")


def _relative_files(root: Path) -> set[str]:
    return {path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file()}


def test_empty_destination_receives_every_file(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _ten_file_tree(source)

    report = sync_tree(source, destination, PathFilter([]), SyncOptions(max_parallel_jobs=2))

    stats = report.statistics
    assert stats.processed == 10
    assert stats.copied == 10
    assert stats.skipped == 0
    assert stats.errored == 0
    assert len(report.outcomes) == 10
    assert all(outcome.success for outcome in report.outcomes)
    assert _relative_files(destination) == _relative_files(source)
    assert report.verification is not None
    assert report.verification.consistent


def test_blacklisted_file_is_skipped_and_never_copied(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "Mods" / "foo.package", "foo")
    _write(source / "Mods" / "ConfigOverride" / "bar.txt", "bar")
    events = []

    report = sync_tree(
        source, destination, PathFilter(DEFAULT_EXCLUDES), SyncOptions(), on_event=events.append
    )

    assert not (destination / "Mods" / "ConfigOverride" / "bar.txt").exists()
    assert (destination / "Mods" / "foo.package").exists()
    assert report.statistics.skipped == 1
    assert report.statistics.copied == 1
    assert [outcome.relative_path for outcome in report.outcomes] == ["Mods/foo.package"]
    blacklisted = [event.relative_path for event in events if event.kind is EventKind.SKIP_BLACKLISTED]
    assert blacklisted == ["Mods/ConfigOverride/bar.txt"]


def test_category_selection_skips_other_subtrees_as_not_included(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "Saves" / "slot1.save", "s1")
    _write(source / "Saves" / "slot2.save", "s2")
    _write(source / "Mods" / "foo.package", "foo")
    _write(source / "Mods" / "baz.package", "baz")
    events = []

    report = sync_tree(
        source,
        destination,
        build_path_filter(categories=["saves"]),
        SyncOptions(),
        on_event=events.append,
    )

    assert _relative_files(destination) == {"Saves/slot1.save", "Saves/slot2.save"}
    assert report.statistics.copied == 2
    assert report.statistics.skipped == 2
    kinds = {event.relative_path: event.kind for event in events}
    assert kinds["Mods/foo.package"] is EventKind.SKIP_NOT_INCLUDED
    assert kinds["Mods/baz.package"] is EventKind.SKIP_NOT_INCLUDED
    assert EventKind.SKIP_BLACKLISTED not in kinds.values()
    assert report.verification is not None and report.verification.consistent


def test_second_run_copies_nothing(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _ten_file_tree(source)

    sync_tree(source, destination, PathFilter([]), SyncOptions())
    second = sync_tree(source, destination, PathFilter([]), SyncOptions())

    assert second.statistics.copied == 0
    assert second.statistics.skipped == 10
    assert second.outcomes == []


def test_dry_run_matches_real_run_decisions_without_writing(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _ten_file_tree(source)
    _write(source / "Config.log", "log")
    path_filter = build_path_filter(categories=["saves", "mods"])

    def decisions(destination: Path, dry_run: bool) -> dict[str, EventKind]:
        events = []
        sync_tree(source, destination, path_filter, SyncOptions(dry_run=dry_run), on_event=events.append)
        return {
            event.relative_path: event.kind
            for event in events
            if event.kind is not EventKind.DIRECTORY_CREATED
        }

    dry = decisions(tmp_path / "dry", dry_run=True)
    real = decisions(tmp_path / "real", dry_run=False)

    assert dry == real
    assert not (tmp_path / "dry").exists()


def test_dry_run_reports_success_and_skips_verification(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _write(source / "Saves" / "slot1.save", "s1")

    report = sync_tree(source, tmp_path / "dst", PathFilter([]), SyncOptions(dry_run=True))

    assert report.statistics.copied == 1
    assert report.verification is None


def test_changed_file_needs_force_to_overwrite(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "Saves" / "slot1.save", "new contents")
    _write(source / "Saves" / "slot2.save", "two")
    _write(destination / "Saves" / "slot1.save", "old")

    report = sync_tree(source, destination, PathFilter([]), SyncOptions(force=False))

    assert report.statistics.errored == 1
    assert report.statistics.copied == 1
    assert report.statistics.errors[0].relative_path == "Saves/slot1.save"
    assert (destination / "Saves" / "slot1.save").read_text(encoding="utf-8") == "old"

    forced = sync_tree(source, destination, PathFilter([]), SyncOptions(force=True))

    assert forced.statistics.copied == 1
    assert forced.statistics.errored == 0
    assert (destination / "Saves" / "slot1.save").read_text(encoding="utf-8") == "new contents"


def test_counters_account_for_every_file(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _ten_file_tree(source)
    _write(source / "GameVersion.txt", "1.0")
    _write(source / "cache" / "thumb.dat", "x")
    _write(destination / "Options.ini", "stale")

    report = sync_tree(source, destination, build_path_filter(), SyncOptions(max_parallel_jobs=3))

    stats = report.statistics
    assert stats.processed == 12
    assert stats.processed == stats.skipped + stats.copied + stats.errored
    assert stats.skipped == 2
    assert stats.errored == 1


def test_extra_destination_files_are_reported_not_removed(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "Saves" / "slot1.save", "s1")
    _write(destination / "Saves" / "old.save", "old")

    report = sync_tree(source, destination, PathFilter([]), SyncOptions())

    assert report.verification is not None
    assert report.verification.extra == ["Saves/old.save"]
    assert report.verification.missing == []
    assert (destination / "Saves" / "old.save").exists()


def test_unreadable_subdirectory_is_reported_and_run_continues(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "Mods" / "foo.package", "foo")
    _write(source / "Tray" / "lot.trayitem", "lot")

    real_scandir = os.scandir

    def flaky_scandir(path):
        if Path(path).name == "Tray":
            raise PermissionError("denied")
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", flaky_scandir)
    events = []

    report = sync_tree(
        source, destination, PathFilter([]), SyncOptions(verify=False), on_event=events.append
    )

    assert report.statistics.copied == 1
    assert (destination / "Mods" / "foo.package").exists()
    errors = [event for event in events if event.kind is EventKind.DIRECTORY_ERROR]
    assert [event.relative_path for event in errors] == ["Tray"]


def test_missing_source_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="does not exist"):
        sync_tree(tmp_path / "nope", tmp_path / "dst", PathFilter([]))


def test_destination_inside_source_is_rejected(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _write(source / "a.txt", "a")

    with pytest.raises(PreconditionError, match="inside source"):
        sync_tree(source, source / "backup", PathFilter([]))

    with pytest.raises(PreconditionError, match="same directory"):
        sync_tree(source, source, PathFilter([]))


def test_uncreatable_destination_is_fatal(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _write(source / "a.txt", "a")
    _write(tmp_path / "blocker", "i am a file")

    with pytest.raises(PreconditionError):
        sync_tree(source, tmp_path / "blocker" / "dst", PathFilter([]))


def test_missing_destination_without_create_is_fatal(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _write(source / "a.txt", "a")

    for dry_run in (False, True):
        with pytest.raises(PreconditionError, match="Destination directory does not exist"):
            sync_tree(
                source,
                tmp_path / "dst",
                PathFilter([]),
                SyncOptions(create_destination=False, dry_run=dry_run),
            )
    assert not (tmp_path / "dst").exists()


def test_existing_destination_without_create_runs(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "a.txt", "a")
    destination.mkdir()

    report = sync_tree(source, destination, PathFilter([]), SyncOptions(create_destination=False))

    assert report.statistics.copied == 1


def test_hash_failure_is_counted_as_error_and_siblings_copy(tmp_path: Path, monkeypatch) -> None:
    import simsync.change_detector

    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "Saves" / "locked.save", "same")
    _write(source / "Saves" / "new.save", "new")
    _write(source / "Mods" / "foo.package", "foo")
    _write(destination / "Saves" / "locked.save", "same")
    stat_result = (source / "Saves" / "locked.save").stat()
    os.utime(destination / "Saves" / "locked.save", (stat_result.st_atime, stat_result.st_mtime))

    real_hash_file = simsync.change_detector.hash_file

    def flaky_hash_file(path):
        if Path(path).name == "locked.save":
            raise PermissionError("locked by another process")
        return real_hash_file(path)

    monkeypatch.setattr(simsync.change_detector, "hash_file", flaky_hash_file)
    events = []

    report = sync_tree(
        source, destination, PathFilter([]), SyncOptions(verify=False), on_event=events.append
    )

    stats = report.statistics
    assert stats.processed == 3
    assert stats.errored == 1
    assert stats.copied == 2
    assert stats.processed == stats.skipped + stats.copied + stats.errored
    assert [error.relative_path for error in stats.errors] == ["Saves/locked.save"]
    failures = [event for event in events if event.kind is EventKind.COPY_FAILURE]
    assert [event.relative_path for event in failures] == ["Saves/locked.save"]
    assert (destination / "Saves" / "new.save").exists()
    assert (destination / "Mods" / "foo.package").exists()


def test_unreadable_directory_is_logged_once(tmp_path: Path, monkeypatch, caplog) -> None:
    source = tmp_path / "src"
    _write(source / "Mods" / "foo.package", "foo")
    _write(source / "Tray" / "lot.trayitem", "lot")

    real_scandir = os.scandir

    def flaky_scandir(path):
        if Path(path).name == "Tray":
            raise PermissionError("denied")
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", flaky_scandir)

    with caplog.at_level(logging.DEBUG, logger="simsync"):
        sync_tree(source, tmp_path / "dst", PathFilter([]), SyncOptions(verify=False))

    warnings = [
        record
        for record in caplog.records
        if record.levelno >= logging.WARNING and record.getMessage().startswith("Cannot read")
    ]
    assert len(warnings) == 1
