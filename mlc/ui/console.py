"""Console output driven by pipeline events."""

import threading
from typing import Optional

from rich.console import Console
from rich.table import Table

from mlc.config.models import AppConfig
from mlc.domain.events import (
    CancelRequested,
    DiscoveryFinished,
    DiscoveryStarted,
    ItemCompleted,
    ItemStarted,
    ProgressSnapshot,
    QualityWarning,
)
from mlc.domain.models import OutcomeStatus, RunSummary
from mlc.infrastructure.event_bus import EventBus
from mlc.ui.formatting import format_hms, format_size

_STATUS_STYLE = {
    OutcomeStatus.CONVERTED: ("green", "Completed"),
    OutcomeStatus.RESUMED_RECONVERT: ("green", "Re-converted"),
    OutcomeStatus.SKIPPED: ("blue", "Skipping (exists)"),
    OutcomeStatus.RESUMED_SKIP: ("blue", "Resuming: skipping completed file"),
    OutcomeStatus.DRY_RUN_PLANNED: ("yellow", "[DRY RUN] Would convert"),
    OutcomeStatus.FAILED: ("red", "Error: failed to convert"),
    OutcomeStatus.INTERRUPTED: ("yellow", "Interrupted"),
}


class ConsoleReporter:
    """Prints per-item status lines, progress snapshots and the final summary."""

    def __init__(self, event_bus: EventBus, config: AppConfig, console: Optional[Console] = None):
        self.event_bus = event_bus
        self.config = config
        self.console = console or Console(highlight=False)
        self._lock = threading.Lock()
        self._subscribe()

    def _subscribe(self) -> None:
        self.event_bus.subscribe(DiscoveryStarted, self._on_discovery_started)
        self.event_bus.subscribe(DiscoveryFinished, self._on_discovery_finished)
        self.event_bus.subscribe(ItemStarted, self._on_item_started)
        self.event_bus.subscribe(ItemCompleted, self._on_item_completed)
        self.event_bus.subscribe(QualityWarning, self._on_quality_warning)
        self.event_bus.subscribe(ProgressSnapshot, self._on_progress)
        self.event_bus.subscribe(CancelRequested, self._on_cancel)

    def _print(self, message: str, style: Optional[str] = None) -> None:
        with self._lock:
            self.console.print(message, style=style, markup=False)

    def _on_discovery_started(self, event: DiscoveryStarted) -> None:
        self._print("Scanning for audio files...", style="blue")

    def _on_discovery_finished(self, event: DiscoveryFinished) -> None:
        general = self.config.general
        self._print(f"Found {event.files_found} audio files ({format_size(event.total_bytes)})", style="blue")
        if event.collisions:
            self._print(f"Warning: {event.collisions} files map to an already used output path", style="yellow")
        self._print(f"Starting conversion from '{self.config.source_dir}' to '{self.config.target_dir}'", style="blue")
        self._print(f"Using {general.jobs} parallel workers", style="blue")
        self._print(f"Output bitrate: {general.bitrate}", style="blue")
        if general.dry_run:
            self._print("DRY RUN MODE - No files will be converted", style="yellow")
        if general.resume:
            self._print("RESUME MODE - Will skip existing valid files", style="yellow")

    def _on_item_started(self, event: ItemStarted) -> None:
        item = event.item
        if event.reconvert:
            self._print(f"Resuming: Re-converting corrupted file {item.target_path}", style="yellow")
        self._print(f"Converting: {item.source_path} -> {item.target_path}", style="green")

    def _on_item_completed(self, event: ItemCompleted) -> None:
        outcome = event.outcome
        style, label = _STATUS_STYLE[outcome.status]
        item = outcome.item
        if outcome.status == OutcomeStatus.DRY_RUN_PLANNED:
            message = f"{label}: {item.source_path} -> {item.target_path}"
            if outcome.reason:
                message += f" (warning: {outcome.reason})"
        elif outcome.status in (OutcomeStatus.FAILED, OutcomeStatus.INTERRUPTED):
            message = f"{label} '{item.source_path}': {outcome.reason}"
        else:
            message = f"{label}: {item.target_path}"
        self._print(message, style=style)

    def _on_quality_warning(self, event: QualityWarning) -> None:
        for message in event.messages:
            self._print(f"Warning: {message}", style="yellow")

    def _on_progress(self, event: ProgressSnapshot) -> None:
        self._print(
            f"Progress: {event.completed}/{event.total} ({event.percent:.0f}%) | "
            f"Rate: {event.rate:.2f}/s | ETA: {format_hms(event.eta_seconds)}",
            style="green",
        )

    def _on_cancel(self, event: CancelRequested) -> None:
        self._print("Received interrupt signal. Cleaning up...", style="yellow")

    def print_summary(self, summary: RunSummary) -> None:
        table = Table(title="Conversion summary", show_header=True, header_style="bold")
        table.add_column("Outcome")
        table.add_column("Files", justify="right")
        for status in OutcomeStatus:
            count = summary.by_status.get(status, 0)
            if count:
                table.add_row(status.value.replace("_", " ").title(), str(count))
        table.add_row("Total discovered", str(summary.total_discovered), style="bold")

        with self._lock:
            self.console.print()
            self.console.print(table)
            self.console.print(
                f"Processed: {summary.processed}/{summary.total_discovered} files",
                style="green", markup=False,
            )
            self.console.print(f"Total time: {format_hms(summary.elapsed_seconds)}", style="green", markup=False)
            if summary.failed:
                self.console.print(f"Failed conversions: {summary.failed}", style="yellow", markup=False)
            if summary.interrupted:
                self.console.print(f"Interrupted conversions: {summary.interrupted}", style="yellow", markup=False)
            log_path = self.config.general.log_path
            if log_path:
                self.console.print(f"Log file saved to: {log_path}", style="blue", markup=False)

