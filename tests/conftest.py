import os
import threading
import pytest
import yaml
from pathlib import Path
from mlc.config.models import AppConfig, GeneralConfig
from mlc.domain.errors import ConversionError, ConversionInterrupted
from mlc.infrastructure.event_bus import EventBus
from mlc.infrastructure.ffmpeg import copy_timestamps, tmp_path_for

# ============================================================================
# Fake codec
# ============================================================================

VALID_HEADER = b"ID3FAKE:"
VALID_TRAILER = b":END"


class FakeCodec:
    """In-process stand-in for FFmpegAdapter.

    Outputs are VALID_HEADER + a tenth of the source bytes + VALID_TRAILER, so
    truncating a file makes `probe` report it as corrupt. Sources whose content
    starts with b"BAD" fail to convert after leaving a partial temp file.
    """

    def __init__(self, fail_names=(), block_names=()):
        self.fail_names = set(fail_names)
        self.block_names = set(block_names)
        self.converted = []
        self.probed = []
        self._lock = threading.Lock()

    def convert(self, source: Path, target: Path, bitrate: str, cancel_token=None) -> None:
        with self._lock:
            self.converted.append(source)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = tmp_path_for(target)
        data = source.read_bytes()

        if source.name in self.block_names:
            tmp.write_bytes(VALID_HEADER)
            # Wait for cancellation like a long-running encode
            if cancel_token is not None and cancel_token.wait(10):
                tmp.unlink(missing_ok=True)
                target.unlink(missing_ok=True)
                raise ConversionInterrupted(f"Interrupted while converting {source.name}")

        if source.name in self.fail_names or data.startswith(b"BAD"):
            tmp.write_bytes(b"partial")
            tmp.unlink()
            target.unlink(missing_ok=True)
            raise ConversionError(f"ffmpeg exited with code 1: {source.name}: Invalid data found")

        tmp.write_bytes(VALID_HEADER + data[: max(1, len(data) // 10)] + VALID_TRAILER)
        os.replace(tmp, target)
        copy_timestamps(source, target)

    def probe(self, path: Path) -> bool:
        with self._lock:
            self.probed.append(path)
        data = path.read_bytes()
        return data.startswith(VALID_HEADER) and data.endswith(VALID_TRAILER)


@pytest.fixture
def fake_codec():
    return FakeCodec()


@pytest.fixture
def make_codec():
    """FakeCodec factory: make_codec(fail_names=..., block_names=...)."""
    return FakeCodec


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def make_config(tmp_path):
    """Factory for AppConfig with source/target under tmp_path."""
    def _make(source_dir=None, target_dir=None, **general):
        general.setdefault("jobs", 2)
        return AppConfig(
            general=GeneralConfig(**general),
            source_dir=source_dir or tmp_path / "src",
            target_dir=target_dir or tmp_path / "dst",
        )
    return _make


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "mlc.yaml"

    content = {
        'general': {
            'bitrate': '256k',
            'jobs': 3,
            'resume': True,
            'extensions': ['flac', '.WAV'],
            'progress_interval_s': 2.5,
        }
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file


# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


# ============================================================================
# Source tree fixtures
# ============================================================================

def write_audio(path: Path, size: int = 2000, mtime: float = 1_600_000_000.0, content: bytes = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content if content is not None else (b"RIFF" + b"\x01" * (size - 4)))
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def music_library(tmp_path):
    """Small source tree with nested, Unicode and punctuated names."""
    src = tmp_path / "src"
    write_audio(src / "a.flac", mtime=1_500_000_000.0)
    write_audio(src / "b.wav", mtime=1_500_000_100.0)
    write_audio(src / "._c.flac")
    write_audio(src / "Artist Name" / "Album (2001) [Deluxe]" / "01 - Intro.FLAC")
    write_audio(src / "Björk" / "Homogenic" / "Jóga.m4a")
    write_audio(src / "notes.txt", content=b"not audio")
    return src


@pytest.fixture
def audio_file():
    """Returns the write_audio helper for building source trees inline."""
    return write_audio
