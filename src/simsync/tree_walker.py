from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Iterator

from simsync.models import FileEntry


DEFAULT_BATCH_SIZE = 100
LARGE_TREE_BATCH_SIZE = 20
LARGE_TREE_THRESHOLD = 50_000

ErrorCallback = Callable[[Path, OSError, bool], None]

log = logging.getLogger("simsync.walker")


def effective_batch_size(estimated_files: int, batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    if estimated_files > LARGE_TREE_THRESHOLD:
        return min(batch_size, LARGE_TREE_BATCH_SIZE)
    return batch_size


def _relative(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def _directory_identity(entry: os.DirEntry[str], is_link: bool) -> tuple[int, int] | None:
    # DirEntry.stat() leaves st_ino at 0 on Windows; inode() is filled for real entries.
    stat_result = entry.stat(follow_symlinks=True)
    inode = stat_result.st_ino or (0 if is_link else entry.inode())
    if not inode:
        return None
    return (stat_result.st_dev, inode)


class TreeWalker:
    """Stack-based directory traversal yielding files lazily in batches.

    Memory is bounded by the directories waiting on the stack, never by the
    depth of the tree or the number of files already yielded.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        follow_symlinks: bool = False,
        on_error: ErrorCallback | None = None,
        error_level: int = logging.WARNING,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.follow_symlinks = follow_symlinks
        self.on_error = on_error
        self.error_level = error_level

    def _report(self, path: Path, exc: OSError, is_dir: bool) -> None:
        log.log(self.error_level, "Cannot read %s: %s", path, exc)
        if self.on_error is not None:
            self.on_error(path, exc, is_dir)

    def _iter_dir_entries(self, root: Path) -> Iterator[os.DirEntry[str]]:
        stack: list[Path] = [root]
        visited: set[tuple[int, int]] = set()

        try:
            root_stat = root.stat()
            visited.add((root_stat.st_dev, root_stat.st_ino))
        except OSError as exc:
            self._report(root, exc, True)
            return

        while stack:
            directory = stack.pop()
            try:
                with os.scandir(directory) as scanner:
                    entries = list(scanner)
            except OSError as exc:
                self._report(directory, exc, True)
                continue

            for entry in entries:
                try:
                    is_dir = entry.is_dir(follow_symlinks=self.follow_symlinks)
                    is_link = entry.is_symlink()
                except OSError as exc:
                    self._report(Path(entry.path), exc, False)
                    continue

                if is_dir:
                    try:
                        identity = _directory_identity(entry, is_link)
                    except OSError as exc:
                        self._report(Path(entry.path), exc, True)
                        continue
                    if identity is not None:
                        if identity in visited:
                            log.debug("Skipping already visited directory %s", entry.path)
                            continue
                        visited.add(identity)
                    stack.append(Path(entry.path))
                    continue

                if is_link and entry.is_dir(follow_symlinks=True):
                    log.debug("Not following directory link %s", entry.path)
                    continue

                yield entry

    def iter_files(self, root: Path) -> Iterator[FileEntry]:
        root = Path(root)
        for entry in self._iter_dir_entries(root):
            path = Path(entry.path)
            try:
                stat_result = entry.stat(follow_symlinks=True)
            except OSError as exc:
                self._report(path, exc, False)
                continue
            yield FileEntry(
                path=path,
                relative_path=_relative(root, path),
                size=stat_result.st_size,
                mtime=stat_result.st_mtime,
            )

    def batches(self, root: Path, batch_size: int | None = None) -> Iterator[list[FileEntry]]:
        size = batch_size or self.batch_size
        batch: list[FileEntry] = []
        for file_entry in self.iter_files(root):
            batch.append(file_entry)
            if len(batch) >= size:
                yield batch
                batch = []
        if batch:
            yield batch

    def walk_roots(self, roots: Iterable[Path]) -> Iterator[list[FileEntry]]:
        for root in roots:
            yield from self.batches(root)

    def count_files(self, root: Path) -> int:
        return sum(1 for _ in self._iter_dir_entries(Path(root)))

    def relative_paths(self, root: Path) -> Iterator[str]:
        root = Path(root)
        for entry in self._iter_dir_entries(root):
            yield _relative(root, Path(entry.path))
