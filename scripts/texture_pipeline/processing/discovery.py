"""
Asset discovery over the shared source tree.
Walks a directory, classifies every regular file and attaches filesystem metadata.
"""

import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from .classifier import AssetKind, classify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetMetadata:
    """Filesystem metadata captured at discovery time."""
    last_modified: datetime
    format: Optional[str] = None
    size: Optional[int] = None


@dataclass(frozen=True)
class AssetRecord:
    """A classified source file. Identity is the relative path."""
    source_path: Path
    relative_path: str
    kind: AssetKind
    metadata: AssetMetadata


@dataclass
class DiscoveryResult:
    """Inventory produced by one discovery pass."""
    records: List[AssetRecord] = field(default_factory=list)
    total_files: int = 0
    kinds_seen: Set[AssetKind] = field(default_factory=set)

    def by_kind(self) -> Dict[AssetKind, List[AssetRecord]]:
        """Group records by asset kind."""
        grouped: Dict[AssetKind, List[AssetRecord]] = {}
        for record in self.records:
            grouped.setdefault(record.kind, []).append(record)
        return grouped

    def merge(self, other: "DiscoveryResult") -> "DiscoveryResult":
        """Combine two inventories; records keep their own relative paths."""
        return DiscoveryResult(
            records=sorted(self.records + other.records, key=lambda r: r.relative_path),
            total_files=self.total_files + other.total_files,
            kinds_seen=self.kinds_seen | other.kinds_seen,
        )


class AssetDiscovery:
    """Builds a fresh inventory of classified assets for a source directory."""

    def __init__(self, source_dir: Union[str, Path]):
        self.source_dir = Path(source_dir)

    def discover(self, exclude_dirs: Iterable[str] = ()) -> DiscoveryResult:
        """
        Recursively enumerate and classify every file under the source directory.

        A missing source directory yields an empty inventory. Files that cannot be
        stat'ed are logged and left out of the records but still counted.

        Args:
            exclude_dirs: Top-level directory names (relative to the root) to skip

        Returns:
            DiscoveryResult with records sorted by relative path
        """
        if not self.source_dir.is_dir():
            logger.info(f"Source directory does not exist: {self.source_dir}")
            return DiscoveryResult()

        excluded = set(exclude_dirs)
        result = DiscoveryResult()

        for relative_path in self._walk(excluded):
            result.total_files += 1
            record = self._create_record(relative_path)
            if record is None:
                continue
            result.records.append(record)
            result.kinds_seen.add(record.kind)

        result.records.sort(key=lambda r: r.relative_path)
        logger.info(
            f"Discovered {len(result.records)} assets across {len(result.kinds_seen)} kinds "
            f"in {self.source_dir} ({result.total_files} files)"
        )
        return result

    def _walk(self, excluded: Set[str]) -> List[str]:
        relative_paths = []
        for dirpath, dirnames, filenames in os.walk(self.source_dir):
            if Path(dirpath) == self.source_dir:
                dirnames[:] = [d for d in dirnames if d not in excluded]
            dirnames.sort()

            for filename in sorted(filenames):
                full = Path(dirpath) / filename
                relative_paths.append(full.relative_to(self.source_dir).as_posix())
        return relative_paths

    def _create_record(self, relative_path: str) -> Optional[AssetRecord]:
        source_path = self.source_dir / relative_path
        try:
            stat = self._stat_file(source_path)
        except OSError as e:
            logger.warning(f"Could not read file {source_path}: {e}")
            return None

        kind = classify(relative_path)
        metadata = AssetMetadata(
            last_modified=datetime.fromtimestamp(stat.st_mtime),
            format=source_path.suffix.lower().lstrip('.') if kind.is_texture else None,
            size=stat.st_size,
        )
        return AssetRecord(
            source_path=source_path,
            relative_path=relative_path,
            kind=kind,
            metadata=metadata,
        )

    def _stat_file(self, path: Path) -> os.stat_result:
        return path.stat()
