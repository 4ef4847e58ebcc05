"""Domain events for the conversion pipeline.

Events flow through the EventBus, decoupling the orchestrator and the progress
aggregator from console output and logging.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel
from .models import ConversionOutcome, RunState, RunSummary, WorkItem


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class RunStateChanged(Event):
    """Emitted by the run controller on every state transition."""

    previous: RunState
    current: RunState
    message: Optional[str] = None


class DiscoveryStarted(Event):
    """Emitted when file discovery begins."""

    directory: Path


class DiscoveryFinished(Event):
    """Emitted after the work set is enumerated."""

    files_found: int
    total_bytes: int = 0
    collisions: int = 0


class ItemStarted(Event):
    """Emitted when a worker begins encoding an item."""

    item: WorkItem
    reconvert: bool = False


class ItemCompleted(Event):
    """Emitted exactly once per dispatched item, whatever the outcome."""

    outcome: ConversionOutcome


class QualityWarning(Event):
    """Post-encode sanity check found something unusual. Never a failure."""

    item: WorkItem
    messages: List[str]


class AllItemsDispatched(Event):
    """Every item has been handed to a worker; workers may still be busy."""

    dispatched: int


class ProgressSnapshot(Event):
    """Periodic progress report from the aggregator."""

    completed: int
    total: int
    elapsed_seconds: float
    rate: float
    eta_seconds: Optional[float] = None

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.completed * 100.0 / self.total


class CancelRequested(Event):
    """Emitted when the cancellation token fires."""

    reason: str = "interrupted"


class RunFinished(Event):
    """Emitted once after all workers have reported."""

    summary: RunSummary
