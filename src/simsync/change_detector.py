from __future__ import annotations

from enum import Enum
from hashlib import sha256
import os
from pathlib import Path

from simsync.models import FileEntry, TransferDecision


HASH_CHUNK_SIZE = 1024 * 1024


class ComparePolicy(str, Enum):
    """How an existing destination file is judged identical to its source.

    ``metadata`` trusts a size and mtime match without reading contents.
    ``metadata+hash`` confirms a metadata match with a content hash and copies
    on any metadata difference. ``hash`` also hash-checks files whose size
    matches but whose mtime differs, so touched-but-unchanged files are kept.
    """

    METADATA = "metadata"
    METADATA_THEN_HASH = "metadata+hash"
    HASH = "hash"


def hash_file(path: Path) -> str:
    digest = sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _same_mtime(left: float, right: float) -> bool:
    return int(left) == int(right)


class ChangeDetector:
    def __init__(self, policy: ComparePolicy | str = ComparePolicy.METADATA_THEN_HASH) -> None:
        self.policy = ComparePolicy(policy)

    def decide(self, source: FileEntry, destination: Path) -> TransferDecision:
        try:
            destination_stat = os.stat(destination)
        except FileNotFoundError:
            return TransferDecision.COPY
        return self.decide_with_meta(source, destination, destination_stat)

    def decide_with_meta(
        self,
        source: FileEntry,
        destination: Path,
        destination_stat: os.stat_result | None,
    ) -> TransferDecision:
        if destination_stat is None:
            return TransferDecision.COPY

        if source.size != destination_stat.st_size:
            return TransferDecision.COPY

        metadata_match = _same_mtime(source.mtime, destination_stat.st_mtime)

        if self.policy is ComparePolicy.METADATA:
            return TransferDecision.SKIP_IDENTICAL if metadata_match else TransferDecision.COPY

        if not metadata_match and self.policy is ComparePolicy.METADATA_THEN_HASH:
            return TransferDecision.COPY

        if hash_file(source.path) == hash_file(destination):
            return TransferDecision.SKIP_IDENTICAL
        return TransferDecision.COPY
