"""Top-level run orchestration.

State machine:
    INITIALIZING → DISCOVERING → SCHEDULED → DRAINING → COMPLETED
    INITIALIZING/DISCOVERING → FATAL_ERROR (preflight or discovery failure)
    any non-terminal state → CANCELLED (cancellation token fired)

Each terminal state maps to a distinct exit status.
"""

import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel

from mlc.config.models import AppConfig
from mlc.domain.errors import DiscoveryError, PreflightError, RunCancelled
from mlc.domain.events import AllItemsDispatched, DiscoveryFinished, DiscoveryStarted, RunStateChanged
from mlc.domain.models import RunState, RunSummary, WorkItem
from mlc.infrastructure.event_bus import EventBus
from mlc.infrastructure.file_scanner import FileScanner
from mlc.infrastructure.housekeeping import HousekeepingService
from mlc.infrastructure.preflight import check_disk_space, check_target_dir, check_tools
from mlc.pipeline.cancellation import CancellationToken, report_cancellation
from mlc.pipeline.classifier import ItemStateClassifier, ValidityProbe
from mlc.pipeline.discovery import check_source_root, discover
from mlc.pipeline.orchestrator import CodecAdapter, Orchestrator
from mlc.pipeline.path_mapper import find_target_collisions
from mlc.pipeline.progress import ProgressAggregator
from mlc.pipeline.quality import DurationProbe, QualityChecker

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130

EXIT_CODES: Dict[RunState, int] = {
    RunState.COMPLETED: EXIT_SUCCESS,
    RunState.FATAL_ERROR: EXIT_FATAL,
    RunState.CANCELLED: EXIT_INTERRUPTED,
}

_TRANSITIONS: Dict[RunState, FrozenSet[RunState]] = {
    RunState.INITIALIZING: frozenset({RunState.DISCOVERING, RunState.FATAL_ERROR, RunState.CANCELLED}),
    RunState.DISCOVERING: frozenset({RunState.SCHEDULED, RunState.FATAL_ERROR, RunState.CANCELLED}),
    RunState.SCHEDULED: frozenset({RunState.DRAINING, RunState.COMPLETED, RunState.CANCELLED}),
    RunState.DRAINING: frozenset({RunState.COMPLETED, RunState.CANCELLED}),
}

# Asked when the output estimate exceeds free space: (estimated, available) -> proceed?
SpaceConfirm = Callable[[int, int], bool]


class RunReport(BaseModel):
    state: RunState
    exit_code: int
    summary: Optional[RunSummary] = None
    error: Optional[str] = None


class RunController:
    """Drives one conversion run from preflight to final report.

    Args:
        config: Run configuration; source_dir and target_dir must be set.
        event_bus: Shared bus (console reporter subscribes to it).
        codec_adapter: Encoder; also provides `probe` for resume validity checks.
        validity_probe: Overrides codec_adapter.probe when given.
        duration_probe: Optional duration lookup for the quality check.
        cancel_token: Cooperative cancellation; the CLI wires signals to it.
        confirm_low_space: Called when the disk estimate exceeds free space;
            without it a low-space estimate is fatal.
        skip_space_check: Operator override for the disk-space estimate.
        which: Tool lookup (shutil.which).
        disk_usage: Free-space lookup (shutil.disk_usage).
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        codec_adapter: CodecAdapter,
        validity_probe: Optional[ValidityProbe] = None,
        duration_probe: Optional[DurationProbe] = None,
        cancel_token: Optional[CancellationToken] = None,
        confirm_low_space: Optional[SpaceConfirm] = None,
        skip_space_check: bool = False,
        which: Callable[[str], Optional[str]] = shutil.which,
        disk_usage: Callable[[str], Tuple[int, int, int]] = shutil.disk_usage,
        housekeeper: Optional[HousekeepingService] = None,
    ):
        if config.source_dir is None or config.target_dir is None:
            raise ValueError("source_dir and target_dir must be set")
        self.config = config
        self.event_bus = event_bus
        self.codec_adapter = codec_adapter
        self.validity_probe = validity_probe or getattr(codec_adapter, "probe", None)
        self.duration_probe = duration_probe
        self.cancel_token = cancel_token or CancellationToken()
        self.confirm_low_space = confirm_low_space
        self.skip_space_check = skip_space_check
        self.which = which
        self.disk_usage = disk_usage
        self.housekeeper = housekeeper or HousekeepingService(config.general.output_extension)
        self.logger = logging.getLogger(__name__)

        self.source_dir = Path(os.path.abspath(config.source_dir))
        self.target_dir = Path(os.path.abspath(config.target_dir))
        self._state = RunState.INITIALIZING

    @property
    def state(self) -> RunState:
        return self._state

    def _transition(self, new_state: RunState, message: Optional[str] = None) -> None:
        previous = self._state
        if previous == new_state:
            return
        if new_state not in _TRANSITIONS.get(previous, frozenset()):
            raise RuntimeError(f"Invalid run state transition {previous.value} -> {new_state.value}")
        self._state = new_state
        self.logger.debug(f"RUN_STATE: {previous.value} -> {new_state.value}")
        self.event_bus.publish(RunStateChanged(previous=previous, current=new_state, message=message))

    def _on_all_dispatched(self, event: AllItemsDispatched) -> None:
        if self._state == RunState.SCHEDULED:
            self._transition(RunState.DRAINING)

    def _raise_if_cancelled(self) -> None:
        if self.cancel_token.is_cancelled:
            report_cancellation(self.cancel_token, self.event_bus)
            raise RunCancelled(self.cancel_token.reason or "interrupted")

    def _preflight(self) -> None:
        general = self.config.general
        try:
            check_source_root(self.source_dir)
        except DiscoveryError as exc:
            raise PreflightError(str(exc)) from exc
        if self.target_dir == self.source_dir:
            raise PreflightError("Source and target directories must differ")
        # Dry runs never encode or probe, and never write under the target
        if not general.dry_run:
            check_tools(which=self.which)
        check_target_dir(self.target_dir, create=not general.dry_run)

    def _check_space(self, items: List[WorkItem]) -> None:
        general = self.config.general
        if general.dry_run or self.skip_space_check:
            return
        enough, estimated, available = check_disk_space(
            self.target_dir, items, general.estimated_output_ratio, disk_usage=self.disk_usage
        )
        if enough:
            return
        self.logger.warning(
            f"LOW_DISK_SPACE: estimated output {estimated // (1024 * 1024)}MB "
            f"exceeds available {available // (1024 * 1024)}MB"
        )
        if self.confirm_low_space is not None and self.confirm_low_space(estimated, available):
            return
        raise PreflightError(
            f"Estimated output size ({estimated // (1024 * 1024)}MB) may exceed "
            f"available space ({available // (1024 * 1024)}MB)"
        )

    def _discover(self) -> List[WorkItem]:
        general = self.config.general
        self.event_bus.publish(DiscoveryStarted(directory=self.source_dir))
        scanner = FileScanner(general.extensions, exclude_dirs=[self.target_dir])
        items = discover(self.source_dir, self.target_dir, scanner, general.output_extension)
        if not items:
            raise DiscoveryError(f"No supported audio files found in '{self.source_dir}'")
        collisions = find_target_collisions(items)
        self.event_bus.publish(DiscoveryFinished(
            files_found=len(items),
            total_bytes=sum(item.size_bytes for item in items),
            collisions=sum(len(group) - 1 for group in collisions.values()),
        ))
        self.logger.info(f"Starting conversion of {len(items)} files")
        return items

    def _log_header(self) -> None:
        general = self.config.general
        self.logger.info("Conversion started")
        self.logger.info(f"Source: {self.source_dir}")
        self.logger.info(f"Target: {self.target_dir}")
        self.logger.info(f"Bitrate: {general.bitrate}")
        self.logger.info(f"Jobs: {general.jobs}")
        self.logger.info(
            f"Modes: dry_run={general.dry_run}, resume={general.resume}, quality_check={general.quality_check}"
        )

    def _build_orchestrator(self) -> Orchestrator:
        general = self.config.general
        quality_checker = None
        if general.quality_check:
            quality_checker = QualityChecker(
                min_size_ratio=general.min_size_ratio,
                max_size_ratio=general.max_size_ratio,
                duration_tolerance_s=general.duration_tolerance_s,
                duration_probe=self.duration_probe,
            )
        return Orchestrator(
            config=self.config,
            event_bus=self.event_bus,
            classifier=ItemStateClassifier(self.validity_probe),
            codec_adapter=self.codec_adapter,
            quality_checker=quality_checker,
            cancel_token=self.cancel_token,
        )

    def _schedule(self, items: List[WorkItem]) -> RunSummary:
        general = self.config.general
        if not general.dry_run:
            self.housekeeper.cleanup_temp_files(self.target_dir)

        aggregator = ProgressAggregator(
            self.event_bus,
            total_count=len(items),
            interval_s=general.progress_interval_s,
            periodic=general.verbose,
        )
        orchestrator = self._build_orchestrator()

        self.event_bus.subscribe(AllItemsDispatched, self._on_all_dispatched)
        aggregator.start()
        self._transition(RunState.SCHEDULED)
        try:
            outcomes = orchestrator.run(items)
        finally:
            summary = aggregator.stop()
            self.event_bus.unsubscribe(AllItemsDispatched, self._on_all_dispatched)

        # Every outcome the scheduler produced must have reached the aggregator
        if len(outcomes) != summary.processed:
            raise RuntimeError(
                f"Outcome tally mismatch: scheduler produced {len(outcomes)}, aggregator counted {summary.processed}"
            )
        return summary

    def run(self) -> RunReport:
        start_time = time.monotonic()
        summary: Optional[RunSummary] = None
        self._log_header()
        try:
            self._preflight()
            self._raise_if_cancelled()

            self._transition(RunState.DISCOVERING)
            items = self._discover()
            self._check_space(items)
            self._raise_if_cancelled()

            summary = self._schedule(items)
            summary = summary.model_copy(update={"elapsed_seconds": time.monotonic() - start_time})
            self._raise_if_cancelled()

            self._transition(RunState.COMPLETED)
            self.logger.info(
                f"Conversion completed. Processed: {summary.processed}/{summary.total_discovered} files "
                f"in {summary.elapsed_seconds:.1f}s (failed={summary.failed})"
            )
            return RunReport(state=self._state, exit_code=EXIT_CODES[self._state], summary=summary)

        except RunCancelled as exc:
            self._transition(RunState.CANCELLED, message=str(exc))
            if summary is not None:
                self.logger.info(
                    f"Conversion cancelled. Processed: {summary.processed}/{summary.total_discovered} files"
                )
            else:
                self.logger.info("Conversion cancelled before scheduling")
            return RunReport(state=self._state, exit_code=EXIT_CODES[self._state], summary=summary, error=str(exc))

        except (PreflightError, DiscoveryError) as exc:
            self.logger.error(f"FATAL: {exc}")
            self._transition(RunState.FATAL_ERROR, message=str(exc))
            return RunReport(state=self._state, exit_code=EXIT_CODES[self._state], error=str(exc))
