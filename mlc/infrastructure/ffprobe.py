import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class FFprobeAdapter:
    """Wrapper around ffprobe to read the duration of an audio file."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        """Parses tag durations like '00:03:25.120000000' or '205.12'."""
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        if ":" in text:
            parts = text.split(":")
            if len(parts) in (2, 3):
                try:
                    parts_f = [float(p) for p in parts]
                except ValueError:
                    return 0.0
                if len(parts_f) == 2:
                    minutes, seconds = parts_f
                    return minutes * 60 + seconds
                hours, minutes, seconds = parts_f
                return hours * 3600 + minutes * 60 + seconds
        return 0.0

    def get_duration(self, file_path: Path) -> Optional[float]:
        """Duration in seconds, or None when it cannot be determined."""
        cmd = [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
        except OSError as exc:
            logger.debug(f"ffprobe unavailable for {file_path}: {exc}")
            return None
        if result.returncode != 0:
            return None

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return None

        # Fallback order: format.duration, format tags, audio stream duration, stream tags
        fmt = data.get("format", {}) or {}
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            audio_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "audio"), None)
            if audio_stream:
                duration = self._to_float(audio_stream.get("duration"))
                if duration <= 0:
                    tags = audio_stream.get("tags", {}) or {}
                    duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))

        return duration if duration > 0 else None
