import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from mlc.config.loader import load_config
from mlc.config.models import AppConfig, apply_overrides
from mlc.domain.errors import ConfigError
from mlc.infrastructure.event_bus import EventBus
from mlc.infrastructure.ffmpeg import FFmpegAdapter
from mlc.infrastructure.ffprobe import FFprobeAdapter
from mlc.infrastructure.logging import setup_logging
from mlc.infrastructure.preflight import tool_available
from mlc.pipeline.cancellation import CancellationToken
from mlc.pipeline.controller import EXIT_FATAL, EXIT_INTERRUPTED, RunController
from mlc.ui.console import ConsoleReporter
from mlc.ui.formatting import format_size

# Exit status the argument parser uses for usage errors
USAGE_ERROR_CODE = 2

app = typer.Typer(
    help="MLC (Music Library Conversion) - batch convert an audio library to MP3",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
)


def build_config(config_path: Optional[Path], source_dir: Path, target_dir: Path, **overrides) -> AppConfig:
    """Config file values with CLI overrides on top. Raises ConfigError."""
    base = load_config(config_path)
    try:
        return apply_overrides(base, source_dir=source_dir, target_dir=target_dir, **overrides)
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(messages) from exc


def install_signal_handlers(token: CancellationToken) -> None:
    """Routes SIGINT/SIGTERM into the cancellation token (main thread only)."""
    if threading.current_thread() is not threading.main_thread():
        return

    def _handler(signum, _frame):
        token.cancel(signal.Signals(signum).name)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _confirm_low_space(estimated: int, available: int) -> bool:
    if not sys.stdin.isatty():
        return False
    typer.secho(
        f"Warning: Estimated output size ({format_size(estimated)}) may exceed available space ({format_size(available)})",
        fg=typer.colors.RED,
        err=True,
    )
    return typer.confirm("Continue anyway?", default=False)


@app.command()
def convert(
    source_dir: Path = typer.Argument(..., help="Directory containing the source audio files"),
    target_dir: Path = typer.Argument(..., help="Directory the MP3 tree is written to"),
    bitrate: Optional[str] = typer.Option(None, "--bitrate", "-b", help="Output bitrate, e.g. 256k (default 320k)"),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", help="Number of parallel workers (default: CPU cores)"),
    log_path: Optional[Path] = typer.Option(None, "--log", "-l", help="Append a timestamped log to this file"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would be converted without doing it"),
    resume: bool = typer.Option(False, "--resume", "-r", help="Re-validate existing outputs and re-convert corrupt ones"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print periodic progress with rate and ETA"),
    quality_check: bool = typer.Option(False, "--quality-check", "-q", help="Sanity-check output size and duration"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Proceed even if the output may not fit on disk"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert an audio library to MP3, mirroring the directory tree."""
    try:
        config = build_config(
            config_path,
            source_dir,
            target_dir,
            bitrate=bitrate,
            jobs=jobs,
            log_path=str(log_path) if log_path is not None else None,
            dry_run=dry_run or None,
            resume=resume or None,
            verbose=verbose or None,
            quality_check=quality_check or None,
            debug=debug or None,
        )
    except ConfigError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_FATAL)

    general = config.general
    try:
        logger = setup_logging(Path(general.log_path) if general.log_path else None, debug=general.debug)
    except OSError as exc:
        typer.secho(f"Error: Cannot open log file '{general.log_path}': {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_FATAL)
    logger.info(f"MLC started: source={config.source_dir}, target={config.target_dir}")

    bus = EventBus()
    reporter = ConsoleReporter(bus, config)
    token = CancellationToken()
    install_signal_handlers(token)

    ffmpeg = FFmpegAdapter(
        audio_codec=general.audio_codec,
        output_format=general.output_extension.lstrip("."),
        id3v2_version=general.id3v2_version,
        debug=general.debug,
    )
    duration_probe = FFprobeAdapter().get_duration if tool_available("ffprobe") else None

    controller = RunController(
        config=config,
        event_bus=bus,
        codec_adapter=ffmpeg,
        duration_probe=duration_probe,
        cancel_token=token,
        confirm_low_space=_confirm_low_space,
        skip_space_check=yes,
    )

    try:
        report = controller.run()
    except KeyboardInterrupt:
        token.cancel("KeyboardInterrupt")
        typer.secho("\nConversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)

    if report.summary is not None:
        reporter.print_summary(report.summary)

    if report.error and report.exit_code == EXIT_FATAL:
        typer.secho(f"Error: {report.error}", fg=typer.colors.RED, err=True)
    elif report.exit_code == EXIT_INTERRUPTED:
        typer.secho("Conversion interrupted; re-run with --resume to continue", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho("Conversion completed!", fg=typer.colors.GREEN)

    raise typer.Exit(code=report.exit_code)


def cli() -> None:
    """Console entry point. Usage errors exit with status 1, not the parser's 2."""
    try:
        app(prog_name="mlc-convert")
    except SystemExit as exc:
        if exc.code == USAGE_ERROR_CODE:
            sys.exit(EXIT_FATAL)
        raise


if __name__ == "__main__":
    cli()
