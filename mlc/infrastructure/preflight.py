"""Environment checks run before any work is scheduled."""

import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from mlc.domain.errors import PreflightError
from mlc.domain.models import WorkItem

REQUIRED_TOOLS = ("ffmpeg",)


def check_tools(tools: Iterable[str] = REQUIRED_TOOLS, which: Callable[[str], Optional[str]] = shutil.which) -> None:
    missing = [tool for tool in tools if which(tool) is None]
    if missing:
        raise PreflightError(f"Required tool(s) not found on PATH: {', '.join(missing)}")


def tool_available(tool: str, which: Callable[[str], Optional[str]] = shutil.which) -> bool:
    return which(tool) is not None


def nearest_existing_parent(path: Path) -> Path:
    path = Path(os.path.abspath(path))
    while not path.exists() and path.parent != path:
        path = path.parent
    return path


def check_target_dir(target_dir: Path, create: bool = True) -> None:
    """Makes sure the target root exists (or could be created) and is writable.

    With create=False nothing is written: the nearest existing ancestor is
    checked for write access instead.
    """
    if target_dir.exists() and not target_dir.is_dir():
        raise PreflightError(f"Target path '{target_dir}' exists and is not a directory")

    if create:
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PreflightError(f"Cannot create target directory '{target_dir}': {exc}") from exc
        probe_dir = target_dir
    else:
        probe_dir = nearest_existing_parent(target_dir)

    if not os.access(probe_dir, os.W_OK | os.X_OK):
        raise PreflightError(f"Target directory '{probe_dir}' is not writable")


def estimate_output_bytes(items: Iterable[WorkItem], ratio: float) -> int:
    """Rough output size: lossy output is about `ratio` of the lossless input."""
    return int(sum(item.size_bytes for item in items) * ratio)


def check_disk_space(
    target_dir: Path,
    items: List[WorkItem],
    ratio: float,
    disk_usage: Callable[[str], Tuple[int, int, int]] = shutil.disk_usage,
) -> Tuple[bool, int, int]:
    """Returns (enough_space, estimated_bytes, available_bytes)."""
    estimated = estimate_output_bytes(items, ratio)
    available = disk_usage(str(nearest_existing_parent(target_dir)))[2]
    return estimated <= available, estimated, available
