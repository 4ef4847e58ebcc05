import os
import stat
import threading
import pytest
from pathlib import Path
from mlc.domain.errors import ConversionError, ConversionInterrupted
from mlc.infrastructure.ffmpeg import FFmpegAdapter, tmp_path_for
from mlc.pipeline.cancellation import CancellationToken


def _script(tmp_path: Path, name: str, body: str) -> Path:
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def source(tmp_path):
    src = tmp_path / "src" / "song.flac"
    src.parent.mkdir()
    src.write_bytes(b"fLaC" + b"\x00" * 100)
    os.utime(src, (1_400_000_000, 1_400_000_000))
    return src


def test_build_command_single_threaded_mp3(tmp_path):
    adapter = FFmpegAdapter()
    cmd = adapter._build_command(Path("/in/a.flac"), Path("/out/a.mp3.tmp"), "256k")

    assert cmd[0] == "ffmpeg"
    assert "-nostdin" in cmd
    assert cmd[cmd.index("-threads") + 1] == "1"
    assert cmd[cmd.index("-i") + 1] == "/in/a.flac"
    assert cmd[cmd.index("-codec:a") + 1] == "libmp3lame"
    assert cmd[cmd.index("-b:a") + 1] == "256k"
    assert cmd[cmd.index("-map_metadata") + 1] == "0"
    assert cmd[cmd.index("-id3v2_version") + 1] == "3"
    assert cmd[-3:] == ["-f", "mp3", "/out/a.mp3.tmp"]


def test_build_command_non_mp3_has_no_id3_option():
    adapter = FFmpegAdapter(audio_codec="libvorbis", output_format="ogg")
    cmd = adapter._build_command(Path("/in/a.flac"), Path("/out/a.ogg.tmp"), "192k")

    assert "-id3v2_version" not in cmd
    assert cmd[-3:] == ["-f", "ogg", "/out/a.ogg.tmp"]


def test_convert_success_creates_dirs_and_copies_mtime(tmp_path, source):
    binary = _script(tmp_path, "ffmpeg-ok", 'for last; do :; done\nprintf encoded > "$last"\n')
    target = tmp_path / "dst" / "deep" / "er" / "song.mp3"

    FFmpegAdapter(binary=str(binary)).convert(source, target, "320k")

    assert target.read_bytes() == b"encoded"
    assert not tmp_path_for(target).exists()
    assert target.stat().st_mtime == source.stat().st_mtime


def test_convert_failure_removes_partial_output(tmp_path, source):
    binary = _script(
        tmp_path, "ffmpeg-fail",
        'for last; do :; done\nprintf partial > "$last"\necho "Invalid data found when processing input" >&2\nexit 1\n',
    )
    target = tmp_path / "dst" / "song.mp3"

    with pytest.raises(ConversionError, match="exited with code 1: Invalid data found"):
        FFmpegAdapter(binary=str(binary)).convert(source, target, "320k")

    assert not target.exists()
    assert not tmp_path_for(target).exists()


def test_convert_missing_binary_is_conversion_error(tmp_path, source):
    target = tmp_path / "dst" / "song.mp3"

    with pytest.raises(ConversionError, match="Failed to start"):
        FFmpegAdapter(binary=str(tmp_path / "no-such-ffmpeg")).convert(source, target, "320k")

    assert not target.exists()


def test_convert_cancellation_terminates_and_cleans_up(tmp_path, source):
    binary = _script(tmp_path, "ffmpeg-slow", 'for last; do :; done\nprintf partial > "$last"\nexec sleep 30\n')
    target = tmp_path / "dst" / "song.mp3"
    token = CancellationToken()
    timer = threading.Timer(0.3, token.cancel)
    timer.start()

    try:
        with pytest.raises(ConversionInterrupted):
            FFmpegAdapter(binary=str(binary)).convert(source, target, "320k", cancel_token=token)
    finally:
        timer.cancel()

    assert not target.exists()
    assert not tmp_path_for(target).exists()


def test_probe_reports_validity(tmp_path):
    binary = _script(
        tmp_path, "ffmpeg-probe",
        'case "$(cat "$5")" in\n  GOOD*) exit 0 ;;\n  *) echo "corrupt frame" >&2; exit 1 ;;\nesac\n',
    )
    good = tmp_path / "good.mp3"
    good.write_text("GOOD data")
    bad = tmp_path / "bad.mp3"
    bad.write_text("truncated")

    adapter = FFmpegAdapter(binary=str(binary))
    assert adapter.probe(good) is True
    assert adapter.probe(bad) is False


def test_probe_missing_binary_is_invalid(tmp_path):
    f = tmp_path / "x.mp3"
    f.write_text("x")
    assert FFmpegAdapter(binary=str(tmp_path / "missing")).probe(f) is False
