import logging
import os
import queue
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import List, Optional, TYPE_CHECKING
from mlc.domain.errors import ConversionError, ConversionInterrupted

if TYPE_CHECKING:
    from mlc.pipeline.cancellation import CancellationToken

TMP_SUFFIX = ".tmp"


def tmp_path_for(target: Path) -> Path:
    """Sibling temp file an encode is written to before the final rename."""
    return target.with_name(target.name + TMP_SUFFIX)


def copy_timestamps(source: Path, target: Path) -> None:
    """Copies atime/mtime of `source` onto `target` (like `touch -r`)."""
    st = source.stat()
    os.utime(target, ns=(st.st_atime_ns, st.st_mtime_ns))


class FFmpegAdapter:
    """Wrapper around ffmpeg for audio transcoding and decode validation.

    Each encode runs with `-threads 1`, so N workers use at most N cores.
    """

    def __init__(
        self,
        binary: str = "ffmpeg",
        audio_codec: str = "libmp3lame",
        output_format: str = "mp3",
        id3v2_version: int = 3,
        debug: bool = False,
    ):
        self.binary = binary
        self.audio_codec = audio_codec
        self.output_format = output_format
        self.id3v2_version = id3v2_version
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _build_command(self, source: Path, output: Path, bitrate: str) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.binary,
            "-nostdin",
            "-hide_banner",
            "-v", "error",
            "-y",  # Overwrite leftovers of a previous attempt
            "-threads", "1",
            "-i", str(source),
            "-map", "0:a:0",
            "-codec:a", self.audio_codec,
            "-b:a", bitrate,
            "-map_metadata", "0",
        ]
        if self.output_format == "mp3":
            cmd.extend(["-id3v2_version", str(self.id3v2_version)])
        # Temp file has no meaningful extension, so the muxer is forced
        cmd.extend(["-f", self.output_format, str(output)])
        return cmd

    @staticmethod
    def _remove_quietly(*paths: Path) -> None:
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    def convert(self, source: Path, target: Path, bitrate: str, cancel_token: Optional["CancellationToken"] = None) -> None:
        """Encodes `source` into `target` and copies the source timestamps.

        Intermediate directories are created first. On any failure the temp file
        and any target file are removed before raising, so no truncated output
        is ever left in place.

        Raises:
            ConversionError: ffmpeg failed or could not be started.
            ConversionInterrupted: cancel_token fired during the encode.
        """
        filename = source.name
        tmp_path = tmp_path_for(target)
        start_time = time.monotonic()

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConversionError(f"Cannot create directory '{target.parent}': {exc}") from exc

        cmd = self._build_command(source, tmp_path, bitrate)
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            returncode, stderr_tail = self._run(cmd, filename, cancel_token)
        except ConversionInterrupted:
            self._remove_quietly(tmp_path, target)
            raise
        except OSError as exc:
            self._remove_quietly(tmp_path, target)
            raise ConversionError(f"Failed to start {self.binary}: {exc}") from exc

        if returncode != 0:
            self._remove_quietly(tmp_path, target)
            detail = stderr_tail[-1] if stderr_tail else "no error output"
            raise ConversionError(f"ffmpeg exited with code {returncode}: {detail}")

        try:
            os.replace(tmp_path, target)
            copy_timestamps(source, target)
        except OSError as exc:
            self._remove_quietly(tmp_path, target)
            raise ConversionError(f"Failed to finalize '{target}': {exc}") from exc

        if self.debug:
            elapsed = time.monotonic() - start_time
            self.logger.debug(f"FFMPEG_END: {filename} status=completed elapsed={elapsed:.2f}s")

    def _run(self, cmd: List[str], filename: str, cancel_token: Optional["CancellationToken"]):
        """Runs ffmpeg, polling the cancellation token while it works.

        Returns (returncode, last stderr lines).
        """
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            errors="replace",
            bufsize=1,
        )

        stderr_tail: "deque[str]" = deque(maxlen=20)
        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stderr:
                output_queue.put(None)
                return
            for line in process.stderr:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        while True:
            if cancel_token is not None and cancel_token.is_cancelled:
                self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (cancel requested)")
                self._terminate(process)
                raise ConversionInterrupted(f"Interrupted while converting {filename}")

            try:
                line = output_queue.get(timeout=0.1)
            except queue.Empty:
                if process.poll() is not None and not reader_thread.is_alive():
                    break
                continue

            if line is None:
                break
            line = line.strip()
            if line:
                stderr_tail.append(line)

        process.wait()
        reader_thread.join(timeout=1)
        return process.returncode, list(stderr_tail)

    @staticmethod
    def _terminate(process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def probe(self, path: Path) -> bool:
        """True if ffmpeg can decode `path` end-to-end without error."""
        cmd = [self.binary, "-nostdin", "-v", "error", "-i", str(path), "-f", "null", "-"]
        try:
            result = subprocess.run(cmd, stdin=subprocess.DEVNULL, capture_output=True, text=True, errors="replace")
        except OSError as exc:
            self.logger.warning(f"PROBE_FAILED: {path.name}: {exc}")
            return False
        if result.returncode != 0:
            if self.debug:
                self.logger.debug(f"PROBE_INVALID: {path.name}: {result.stderr.strip()[-200:]}")
            return False
        return True
