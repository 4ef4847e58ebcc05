import logging
import os
from pathlib import Path
from mlc.infrastructure.ffmpeg import TMP_SUFFIX

logger = logging.getLogger(__name__)


class HousekeepingService:
    """Service for cleaning up leftovers of interrupted runs.

    Only names an encode produces (`<name><output_extension>.tmp`) are touched;
    other `.tmp` files in the target tree belong to someone else.
    """

    def __init__(self, output_extension: str = ".mp3"):
        if not output_extension.startswith("."):
            output_extension = f".{output_extension}"
        self.temp_suffix = (output_extension + TMP_SUFFIX).lower()

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes stale encode temp files. Returns the number removed."""
        removed = 0
        if not directory.is_dir():
            return removed
        for root, dirs, files in os.walk(directory):
            for file in files:
                if file.lower().endswith(self.temp_suffix) and len(file) > len(self.temp_suffix):
                    path = Path(root) / file
                    try:
                        path.unlink()
                        removed += 1
                    except OSError as exc:
                        logger.warning(f"Failed to remove stale temp file {path}: {exc}")
        if removed:
            logger.info(f"HOUSEKEEPING: removed {removed} stale temp files from {directory}")
        return removed
