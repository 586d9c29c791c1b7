from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path

from simsync.path_filter import PathFilter
from simsync.tree_walker import TreeWalker


log = logging.getLogger("simsync.verify")


@dataclass(slots=True)
class VerificationReport:
    missing: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.missing and not self.extra


class StructureVerifier:
    """Compares the filtered file sets of two trees after a transfer."""

    def __init__(self, path_filter: PathFilter, walker: TreeWalker | None = None) -> None:
        self.path_filter = path_filter
        self.walker = walker or TreeWalker()

    def _filtered_paths(self, root: Path) -> set[str]:
        if not root.is_dir():
            return set()
        return {rel for rel in self.walker.relative_paths(root) if self.path_filter.admits(rel)}

    def verify(self, source_root: Path, destination_root: Path) -> VerificationReport:
        source_paths = self._filtered_paths(Path(source_root))
        destination_paths = self._filtered_paths(Path(destination_root))

        report = VerificationReport(
            missing=sorted(source_paths - destination_paths),
            extra=sorted(destination_paths - source_paths),
        )
        for rel in report.missing:
            log.warning("Missing at destination: %s", rel)
        for rel in report.extra:
            log.warning("Only at destination: %s", rel)
        return report
