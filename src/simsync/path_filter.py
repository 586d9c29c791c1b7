from __future__ import annotations

from pathlib import PurePosixPath
from typing import Iterable

import pathspec

from simsync.models import TransferDecision


DEFAULT_EXCLUDES = [
    "Config.log",
    "GameVersion.txt",
    "localthumbcache.package",
    "avatarcache.package",
    "ConfigOverride/",
    "lastUI.txt",
    "lastCrash*.txt",
    "*.bad",
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    "cache/",
    "cachestr/",
]

CATEGORIES: dict[str, list[str]] = {
    "saves": ["/Saves/"],
    "mods": ["/Mods/"],
    "tray": ["/Tray/"],
    "screenshots": ["/Screenshots/"],
    "options": ["/Options.ini"],
}


def patterns_for_categories(names: Iterable[str]) -> list[str]:
    patterns: list[str] = []
    for name in names:
        key = name.strip().lower()
        if key not in CATEGORIES:
            known = ", ".join(sorted(CATEGORIES))
            raise ValueError(f"Unknown category '{name}' (expected one of: {known})")
        patterns.extend(CATEGORIES[key])
    return patterns


def _compile(patterns: Iterable[str]) -> pathspec.GitIgnoreSpec:
    # Windows separators are accepted in patterns, so "\" is never an escape.
    lines = [
        pattern.strip().replace("\\", "/").lower()
        for pattern in patterns
        if pattern and pattern.strip()
    ]
    try:
        return pathspec.GitIgnoreSpec.from_lines(lines)
    except ValueError as exc:
        raise ValueError(f"Invalid pattern: {exc}") from exc


def _normalize(relative_path: str | PurePosixPath) -> str | None:
    text = str(relative_path).replace("\\", "/")
    if not text.strip() or text.startswith("/"):
        return None
    parts = [part for part in text.split("/") if part not in ("", ".")]
    if not parts or ".." in parts:
        return None
    return "/".join(parts).lower()


class PathFilter:
    """Exclude/include rules matched case-insensitively against relative paths.

    Holds only compiled, read-only specs, so one instance may be shared by the
    transfer loop, worker threads and the structure verifier.
    """

    def __init__(self, exclude: Iterable[str], include: Iterable[str] = ()) -> None:
        self.exclude_patterns = list(exclude)
        self.include_patterns = list(include)
        self._exclude_spec = _compile(self.exclude_patterns)
        self._include_spec = _compile(self.include_patterns) if self.include_patterns else None

    def exclude(self, relative_path: str | PurePosixPath) -> bool:
        candidate = _normalize(relative_path)
        if candidate is None:
            return True
        return self._exclude_spec.match_file(candidate)

    def should_include(self, relative_path: str | PurePosixPath) -> bool:
        if self._include_spec is None:
            return True
        candidate = _normalize(relative_path)
        if candidate is None:
            return False
        return self._include_spec.match_file(candidate)

    def classify(self, relative_path: str | PurePosixPath) -> TransferDecision | None:
        if self.exclude(relative_path):
            return TransferDecision.SKIP_BLACKLISTED
        if not self.should_include(relative_path):
            return TransferDecision.SKIP_NOT_INCLUDED
        return None

    def admits(self, relative_path: str | PurePosixPath) -> bool:
        return self.classify(relative_path) is None


def build_path_filter(
    excludes: Iterable[str] | None = None,
    categories: Iterable[str] = (),
    extra_includes: Iterable[str] = (),
    additional_excludes: Iterable[str] = (),
) -> PathFilter:
    exclude_patterns: list[str] = list(DEFAULT_EXCLUDES if excludes is None else excludes)
    exclude_patterns.extend(additional_excludes)

    include_patterns = patterns_for_categories(categories)
    include_patterns.extend(extra_includes)

    return PathFilter(exclude_patterns, include_patterns)
