import logging
import os
from pathlib import Path
from typing import List

from mlc.domain.errors import DiscoveryError
from mlc.domain.models import WorkItem
from mlc.infrastructure.file_scanner import FileScanner
from mlc.pipeline.path_mapper import map_target_path

logger = logging.getLogger(__name__)


def check_source_root(source_root: Path) -> None:
    """Raises DiscoveryError unless `source_root` is a readable directory."""
    if not source_root.exists():
        raise DiscoveryError(f"Source directory '{source_root}' does not exist")
    if not source_root.is_dir():
        raise DiscoveryError(f"Source path '{source_root}' is not a directory")
    if not os.access(source_root, os.R_OK | os.X_OK):
        raise DiscoveryError(f"Source directory '{source_root}' is not readable")


def discover(source_root: Path, target_root: Path, scanner: FileScanner, output_extension: str = ".mp3") -> List[WorkItem]:
    """Enumerate all eligible files under `source_root` as WorkItems.

    The whole tree is walked before anything is returned, so the total count is
    known up front. Order is deterministic (sorted walk).
    """
    source_root = Path(os.path.abspath(source_root))
    target_root = Path(os.path.abspath(target_root))
    check_source_root(source_root)

    items: List[WorkItem] = []
    for path in scanner.scan(source_root):
        try:
            size = path.stat().st_size
        except OSError as exc:
            # Vanished between listing and stat; the worker would fail anyway
            logger.warning(f"DISCOVERY_STAT_FAILED: {path}: {exc}")
            size = 0
        items.append(WorkItem(
            source_path=path,
            target_path=map_target_path(source_root, target_root, path, output_extension),
            size_bytes=size,
        ))

    logger.debug(f"DISCOVERY: {len(items)} files under {source_root}")
    return items
