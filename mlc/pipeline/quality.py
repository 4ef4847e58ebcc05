import logging
from pathlib import Path
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DurationProbe = Callable[[Path], Optional[float]]


class QualityChecker:
    """Heuristic post-encode sanity checks. Findings are warnings, never failures.

    Args:
        min_size_ratio: Smallest plausible output/input size ratio.
        max_size_ratio: Largest plausible output/input size ratio.
        duration_tolerance_s: Allowed difference between input and output duration.
        duration_probe: Optional callable returning a duration in seconds (or None).
    """

    def __init__(
        self,
        min_size_ratio: float = 0.05,
        max_size_ratio: float = 0.5,
        duration_tolerance_s: float = 1.0,
        duration_probe: Optional[DurationProbe] = None,
    ):
        self.min_size_ratio = min_size_ratio
        self.max_size_ratio = max_size_ratio
        self.duration_tolerance_s = duration_tolerance_s
        self.duration_probe = duration_probe

    def check(self, source: Path, target: Path) -> List[str]:
        warnings: List[str] = []

        try:
            input_size = source.stat().st_size
            output_size = target.stat().st_size
        except OSError as exc:
            return [f"Size check skipped: {exc}"]

        min_size = input_size * self.min_size_ratio
        max_size = input_size * self.max_size_ratio
        if output_size < min_size or output_size > max_size:
            warnings.append(
                f"Unusual file size for {target.name} (input: {input_size}B, output: {output_size}B)"
            )

        if self.duration_probe is not None:
            input_duration = self.duration_probe(source)
            output_duration = self.duration_probe(target)
            if input_duration is not None and output_duration is not None:
                delta = abs(input_duration - output_duration)
                if delta > self.duration_tolerance_s:
                    warnings.append(
                        f"Duration mismatch for {target.name} "
                        f"(input: {input_duration:.2f}s, output: {output_duration:.2f}s)"
                    )

        for message in warnings:
            logger.warning(f"QUALITY_WARN: {message}")
        return warnings
