import logging
import os
from pathlib import Path
from typing import Generator, List, Optional

HIDDEN_PREFIX = "._"

logger = logging.getLogger(__name__)


class FileScanner:
    """Recursively scans for audio files in a directory.

    Matching is case-insensitive on the extension. AppleDouble sidecar files
    (basename starting with "._") are never yielded.
    """

    def __init__(self, extensions: List[str], exclude_dirs: Optional[List[Path]] = None):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.exclude_dirs = {Path(os.path.abspath(d)) for d in (exclude_dirs or [])}

    def _on_walk_error(self, error: OSError) -> None:
        logger.warning(f"SCAN_ERROR: {error}")

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Scans the directory and yields matching file paths in sorted order."""
        for root, dirs, files in os.walk(str(root_dir), onerror=self._on_walk_error):
            root_path = Path(root)

            # Ensure deterministic traversal: sort directories and files
            dirs[:] = sorted(d for d in dirs if Path(os.path.abspath(root_path / d)) not in self.exclude_dirs)
            files.sort()

            for file_name in files:
                if file_name.startswith(HIDDEN_PREFIX):
                    continue

                file_path = root_path / file_name
                if file_path.suffix.lower() not in self.extensions:
                    continue

                # Regular files only (skip broken symlinks, fifos, ...)
                if not file_path.is_file():
                    continue

                yield file_path
