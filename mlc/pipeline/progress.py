"""Progress aggregation for a conversion run.

Workers never touch the counters directly: each outcome travels over the event
bus into a queue drained by a single reporter thread, which owns the counters
and emits a snapshot on every timer tick.
"""

import logging
import queue
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from mlc.domain.events import ItemCompleted, ProgressSnapshot, RunFinished
from mlc.domain.models import ConversionOutcome, OutcomeStatus, RunSummary
from mlc.infrastructure.event_bus import EventBus

logger = logging.getLogger(__name__)

_STOP = object()


def compute_rate_eta(completed: int, total: int, elapsed_seconds: float) -> Tuple[float, Optional[float]]:
    """Returns (items per second, seconds remaining).

    ETA is None while nothing has completed or no time has elapsed.
    """
    if completed <= 0 or elapsed_seconds <= 0:
        return 0.0, None
    rate = completed / elapsed_seconds
    if rate <= 0:
        return 0.0, None
    remaining = max(0, total - completed)
    return rate, remaining / rate


class ProgressState:
    """Run-wide completion counter. Increment-only and thread-safe."""

    def __init__(self, total_count: int):
        self._lock = threading.Lock()
        self.total_count = total_count
        self._completed_count = 0
        self._by_status: Dict[OutcomeStatus, int] = {}

    @property
    def completed_count(self) -> int:
        with self._lock:
            return self._completed_count

    def record(self, status: OutcomeStatus) -> int:
        """Counts one finished item and returns the new completed count."""
        with self._lock:
            if self._completed_count >= self.total_count:
                raise RuntimeError(
                    f"Progress overflow: {self._completed_count + 1} outcomes for {self.total_count} items"
                )
            self._completed_count += 1
            self._by_status[status] = self._by_status.get(status, 0) + 1
            return self._completed_count

    def counts(self) -> Dict[OutcomeStatus, int]:
        with self._lock:
            return dict(self._by_status)

    @property
    def is_complete(self) -> bool:
        with self._lock:
            return self._completed_count == self.total_count


class ProgressAggregator:
    """Consumes ItemCompleted events and reports progress.

    Args:
        event_bus: Bus the scheduler publishes ItemCompleted on.
        total_count: Size of the discovered work set.
        interval_s: Seconds between periodic snapshots.
        periodic: Publish ProgressSnapshot on every tick (verbose mode).
        clock: Monotonic time source.
    """

    def __init__(
        self,
        event_bus: EventBus,
        total_count: int,
        interval_s: float = 5.0,
        periodic: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.event_bus = event_bus
        self.state = ProgressState(total_count)
        self.interval_s = interval_s
        self.periodic = periodic
        self._clock = clock
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._start_time: Optional[float] = None
        self._summary: Optional[RunSummary] = None

    @property
    def elapsed_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return max(0.0, self._clock() - self._start_time)

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("ProgressAggregator already started")
        self._start_time = self._clock()
        self.event_bus.subscribe(ItemCompleted, self._on_item_completed)
        self._thread = threading.Thread(target=self._run, name="mlc-progress", daemon=True)
        self._thread.start()

    def _on_item_completed(self, event: ItemCompleted) -> None:
        self._queue.put(event.outcome)

    def _run(self) -> None:
        next_tick = self._clock() + self.interval_s
        while True:
            timeout = max(0.0, next_tick - self._clock())
            try:
                message = self._queue.get(timeout=timeout)
            except queue.Empty:
                message = None

            if message is _STOP:
                break
            if isinstance(message, ConversionOutcome):
                self.state.record(message.status)

            if self._clock() >= next_tick:
                next_tick = self._clock() + self.interval_s
                if self.periodic:
                    self.event_bus.publish(self.snapshot())

    def snapshot(self) -> ProgressSnapshot:
        completed = self.state.completed_count
        elapsed = self.elapsed_seconds
        rate, eta = compute_rate_eta(completed, self.state.total_count, elapsed)
        return ProgressSnapshot(
            completed=completed,
            total=self.state.total_count,
            elapsed_seconds=elapsed,
            rate=rate,
            eta_seconds=eta,
        )

    def stop(self) -> RunSummary:
        """Drains pending outcomes, stops the timer and publishes the final summary."""
        if self._summary is not None:
            return self._summary

        if self._thread is not None:
            self.event_bus.unsubscribe(ItemCompleted, self._on_item_completed)
            self._queue.put(_STOP)
            self._thread.join()
            self._thread = None

        self._summary = RunSummary.from_counts(
            self.state.counts(),
            total_discovered=self.state.total_count,
            elapsed_seconds=self.elapsed_seconds,
        )
        logger.debug(f"PROGRESS_FINAL: {self.state.completed_count}/{self.state.total_count}")
        self.event_bus.publish(RunFinished(summary=self._summary))
        return self._summary
