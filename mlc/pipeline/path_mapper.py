"""Source path → target path mapping.

The mapping is pure: the same three inputs always give the same output, which
is what makes re-runs idempotent.
"""

from pathlib import Path
from typing import Dict, Iterable, List

from mlc.domain.models import WorkItem


def map_target_path(source_root: Path, target_root: Path, source_path: Path, output_extension: str = ".mp3") -> Path:
    """Mirror `source_path` under `target_root` with the extension replaced.

    Every intermediate directory segment is kept verbatim. Only the last suffix
    is replaced, so "Live. 1999.flac" becomes "Live. 1999.mp3".

    Raises:
        ValueError: if `source_path` is not located under `source_root`.
    """
    rel_path = Path(source_path).relative_to(source_root)
    if not rel_path.name:
        raise ValueError(f"{source_path} is the source root itself, not a file under it")
    if not output_extension.startswith("."):
        output_extension = f".{output_extension}"
    return Path(target_root) / rel_path.with_suffix(output_extension)


def find_target_collisions(items: Iterable[WorkItem]) -> Dict[Path, List[WorkItem]]:
    """Group items whose target paths coincide (e.g. song.flac and song.wav).

    Only groups with more than one member are returned; within a group the
    discovery order is preserved.
    """
    by_target: Dict[Path, List[WorkItem]] = {}
    for item in items:
        by_target.setdefault(item.target_path, []).append(item)
    return {target: group for target, group in by_target.items() if len(group) > 1}
