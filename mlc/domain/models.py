from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Action(str, Enum):
    CONVERT = "CONVERT"
    SKIP_EXISTS = "SKIP_EXISTS"
    RECONVERT_CORRUPT = "RECONVERT_CORRUPT"
    DRY_RUN_ONLY = "DRY_RUN_ONLY"


class OutcomeStatus(str, Enum):
    SKIPPED = "SKIPPED"
    CONVERTED = "CONVERTED"
    RESUMED_SKIP = "RESUMED_SKIP"
    RESUMED_RECONVERT = "RESUMED_RECONVERT"
    FAILED = "FAILED"
    DRY_RUN_PLANNED = "DRY_RUN_PLANNED"
    INTERRUPTED = "INTERRUPTED"  # Cancelled while encoding

    @property
    def is_success(self) -> bool:
        return self in (OutcomeStatus.CONVERTED, OutcomeStatus.RESUMED_RECONVERT)

    @property
    def is_skip(self) -> bool:
        return self in (OutcomeStatus.SKIPPED, OutcomeStatus.RESUMED_SKIP)


class RunState(str, Enum):
    INITIALIZING = "INITIALIZING"
    DISCOVERING = "DISCOVERING"
    SCHEDULED = "SCHEDULED"
    DRAINING = "DRAINING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FATAL_ERROR = "FATAL_ERROR"


class WorkItem(BaseModel):
    """One discovered source file and the output path it maps to."""

    model_config = ConfigDict(frozen=True)

    source_path: Path
    target_path: Path
    size_bytes: int = 0


class ConversionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    item: WorkItem
    status: OutcomeStatus
    reason: Optional[str] = None
    quality_warnings: List[str] = Field(default_factory=list)
    elapsed_seconds: float = 0.0


class RunSummary(BaseModel):
    """Final tally of a run, derived from the outcomes produced."""

    total_discovered: int = 0
    succeeded: int = 0
    skipped: int = 0
    planned: int = 0
    failed: int = 0
    interrupted: int = 0
    elapsed_seconds: float = 0.0
    by_status: Dict[OutcomeStatus, int] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        return sum(self.by_status.values())

    @classmethod
    def from_counts(
        cls,
        by_status: Dict[OutcomeStatus, int],
        total_discovered: int,
        elapsed_seconds: float,
    ) -> "RunSummary":
        return cls(
            total_discovered=total_discovered,
            succeeded=sum(n for s, n in by_status.items() if s.is_success),
            skipped=sum(n for s, n in by_status.items() if s.is_skip),
            planned=by_status.get(OutcomeStatus.DRY_RUN_PLANNED, 0),
            failed=by_status.get(OutcomeStatus.FAILED, 0),
            interrupted=by_status.get(OutcomeStatus.INTERRUPTED, 0),
            elapsed_seconds=elapsed_seconds,
            by_status=dict(by_status),
        )
