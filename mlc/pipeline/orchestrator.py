"""Scheduler and worker pool for audio conversion.

Takes the discovered work set and pipelines each item through
classifier → codec → quality check on a bounded thread pool. Every dispatched
item yields exactly one ConversionOutcome, published as an ItemCompleted event.

Key responsibilities:
- Keep at most `jobs` items in flight (submit-on-demand, no queue of futures)
- Isolate per-item failures: an exception becomes a FAILED outcome
- Stop dispatching on cancellation and let in-flight encodes abort with cleanup
- Fail colliding targets up front instead of letting workers overwrite each other
"""

import concurrent.futures
import logging
import time
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from mlc.config.models import AppConfig
from mlc.domain.errors import ConversionError, ConversionInterrupted
from mlc.domain.events import AllItemsDispatched, ItemCompleted, ItemStarted, QualityWarning
from mlc.domain.models import Action, ConversionOutcome, OutcomeStatus, WorkItem
from mlc.infrastructure.event_bus import EventBus
from mlc.pipeline.cancellation import CancellationToken, report_cancellation
from mlc.pipeline.classifier import ItemStateClassifier
from mlc.pipeline.path_mapper import find_target_collisions
from mlc.pipeline.quality import QualityChecker


class CodecAdapter(Protocol):
    def convert(self, source: Path, target: Path, bitrate: str, cancel_token: Optional[CancellationToken] = None) -> None:
        ...


class Orchestrator:
    """Bounded worker pool for conversion jobs.

    Args:
        config: Run configuration (read-only).
        event_bus: EventBus for ItemStarted/ItemCompleted/QualityWarning events.
        classifier: Decides convert/skip/reconvert per item.
        codec_adapter: Performs the encode (FFmpegAdapter in production).
        quality_checker: Used only when quality_check is enabled.
        cancel_token: Cooperative cancellation shared with the controller.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        classifier: ItemStateClassifier,
        codec_adapter: CodecAdapter,
        quality_checker: Optional[QualityChecker] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.classifier = classifier
        self.codec_adapter = codec_adapter
        self.quality_checker = quality_checker
        self.cancel_token = cancel_token or CancellationToken()
        self.logger = logging.getLogger(__name__)

    def _emit(self, outcome: ConversionOutcome) -> ConversionOutcome:
        self.event_bus.publish(ItemCompleted(outcome=outcome))
        return outcome

    def _collision_losers(self, items: Sequence[WorkItem]) -> Dict[Path, Path]:
        """Maps source paths that lose a target collision to the winning source."""
        losers: Dict[Path, Path] = {}
        for target, group in find_target_collisions(items).items():
            winner = group[0]
            for item in group[1:]:
                losers[item.source_path] = winner.source_path
                self.logger.warning(
                    f"TARGET_COLLISION: {item.source_path} and {winner.source_path} both map to {target}"
                )
        return losers

    def _process_item(self, item: WorkItem) -> ConversionOutcome:
        general = self.config.general
        filename = item.source_path.name
        start_time = time.monotonic()

        def outcome(status: OutcomeStatus, reason: Optional[str] = None, warnings: Optional[List[str]] = None) -> ConversionOutcome:
            return ConversionOutcome(
                item=item,
                status=status,
                reason=reason,
                quality_warnings=warnings or [],
                elapsed_seconds=time.monotonic() - start_time,
            )

        if self.cancel_token.is_cancelled:
            return self._emit(outcome(OutcomeStatus.INTERRUPTED, "Cancelled before start"))

        try:
            action = self.classifier.classify(item, general)

            if action == Action.DRY_RUN_ONLY:
                self.logger.info(f"DRY_RUN: would convert {item.source_path} -> {item.target_path}")
                return self._emit(outcome(OutcomeStatus.DRY_RUN_PLANNED))

            if action == Action.SKIP_EXISTS:
                status = OutcomeStatus.RESUMED_SKIP if general.resume else OutcomeStatus.SKIPPED
                self.logger.info(f"SKIP_EXISTS: {item.target_path}")
                return self._emit(outcome(status))

            reconvert = action == Action.RECONVERT_CORRUPT
            if reconvert:
                # Never merge into a corrupt output
                item.target_path.unlink(missing_ok=True)
                self.logger.info(f"RECONVERT: removed corrupt {item.target_path}")

            self.event_bus.publish(ItemStarted(item=item, reconvert=reconvert))
            self.logger.info(f"CONVERT_START: {item.source_path} -> {item.target_path}")
            self.codec_adapter.convert(
                item.source_path,
                item.target_path,
                general.bitrate,
                cancel_token=self.cancel_token,
            )

            warnings: List[str] = []
            if general.quality_check and self.quality_checker is not None:
                warnings = self.quality_checker.check(item.source_path, item.target_path)
                if warnings:
                    self.event_bus.publish(QualityWarning(item=item, messages=warnings))

            status = OutcomeStatus.RESUMED_RECONVERT if reconvert else OutcomeStatus.CONVERTED
            result = outcome(status, warnings=warnings)
            self.logger.info(
                f"CONVERT_END: {item.source_path} -> {item.target_path} "
                f"status={status.value} elapsed={result.elapsed_seconds:.2f}s"
            )
            return self._emit(result)

        except ConversionInterrupted as e:
            self.logger.info(f"CONVERT_INTERRUPTED: {filename}")
            return self._emit(outcome(OutcomeStatus.INTERRUPTED, str(e)))
        except ConversionError as e:
            self.logger.error(f"CONVERT_FAILED: {item.source_path}: {e}")
            return self._emit(outcome(OutcomeStatus.FAILED, str(e)))
        except Exception as e:
            # Log exception but don't crash the pool
            self.logger.exception(f"Exception processing {filename}: {e}")
            return self._emit(outcome(OutcomeStatus.FAILED, f"Exception: {e}"))

    def run(self, items: Sequence[WorkItem]) -> List[ConversionOutcome]:
        """Processes every item once; returns the outcomes in completion order."""
        general = self.config.general
        outcomes: List[ConversionOutcome] = []

        losers = self._collision_losers(items)
        pending = deque()
        for item in items:
            winner = losers.get(item.source_path)
            if winner is not None:
                reason = f"Target {item.target_path} collides with {winner}"
                # Dry runs plan every discovered item
                status = OutcomeStatus.DRY_RUN_PLANNED if general.dry_run else OutcomeStatus.FAILED
                outcomes.append(self._emit(ConversionOutcome(item=item, status=status, reason=reason)))
            else:
                pending.append(item)

        max_inflight = general.jobs
        in_flight: Dict[concurrent.futures.Future, WorkItem] = {}
        dispatched = 0
        dispatch_reported = False

        with concurrent.futures.ThreadPoolExecutor(max_workers=max_inflight, thread_name_prefix="mlc-worker") as executor:
            def submit_batch():
                nonlocal dispatched
                while len(in_flight) < max_inflight and pending and not self.cancel_token.is_cancelled:
                    item = pending.popleft()
                    future = executor.submit(self._process_item, item)
                    in_flight[future] = item
                    dispatched += 1

            submit_batch()
            while in_flight or (pending and not self.cancel_token.is_cancelled):
                if not pending and not dispatch_reported:
                    dispatch_reported = True
                    self.event_bus.publish(AllItemsDispatched(dispatched=dispatched))

                if in_flight:
                    done, _ = concurrent.futures.wait(
                        set(in_flight.keys()),
                        timeout=1.0,
                        return_when=concurrent.futures.FIRST_COMPLETED
                    )
                    for future in done:
                        item = in_flight.pop(future)
                        try:
                            outcomes.append(future.result())
                        except Exception as e:
                            # _process_item never raises; keep exactly-once accounting if it does
                            self.logger.error(f"Worker crashed on {item.source_path}: {e}")
                            outcomes.append(self._emit(ConversionOutcome(
                                item=item, status=OutcomeStatus.FAILED, reason=f"Worker crashed: {e}"
                            )))

                if self.cancel_token.is_cancelled:
                    report_cancellation(self.cancel_token, self.event_bus)
                submit_batch()

        if self.cancel_token.is_cancelled:
            report_cancellation(self.cancel_token, self.event_bus)
            self.logger.info(f"Cancelled: {len(pending)} items not dispatched")
        elif not dispatch_reported:
            self.event_bus.publish(AllItemsDispatched(dispatched=dispatched))

        return outcomes
