"""End-to-end runs of the controller against a fake encoder."""

import os
import threading
import time
import pytest
from mlc.domain.events import ItemCompleted, ProgressSnapshot
from mlc.domain.models import OutcomeStatus, RunState
from mlc.pipeline.controller import EXIT_SUCCESS, RunController


def _run(config, event_bus, codec, **kwargs):
    controller = RunController(
        config=config,
        event_bus=event_bus,
        codec_adapter=codec,
        which=lambda tool: f"/usr/bin/{tool}",
        disk_usage=lambda path: (10**12, 0, 10**12),
        **kwargs,
    )
    return controller.run()


def _tree(root):
    """Relative path -> (size, mtime_ns) for every file under root."""
    if not root.exists():
        return {}
    return {
        str(p.relative_to(root)): (p.stat().st_size, p.stat().st_mtime_ns)
        for p in root.rglob("*")
        if p.is_file()
    }


def test_nested_library_keeps_structure_and_mtimes(tmp_path, make_config, event_bus, fake_codec, audio_file):
    src = tmp_path / "src"
    audio_file(src / "a.flac", mtime=1_400_000_000.0)
    audio_file(src / "Album" / "b.wav", mtime=1_400_000_500.0)
    audio_file(src / "Album" / "Disc 2" / "c.ape", mtime=1_400_001_000.0)
    config = make_config(bitrate="256k")

    report = _run(config, event_bus, fake_codec)

    assert report.state == RunState.COMPLETED
    assert report.summary.succeeded == 3
    dst = config.target_dir
    assert sorted(_tree(dst)) == ["Album/Disc 2/c.mp3", "Album/b.mp3", "a.mp3"]
    for name, mtime in (("a", 1_400_000_000), ("Album/b", 1_400_000_500), ("Album/Disc 2/c", 1_400_001_000)):
        assert int((dst / f"{name}.mp3").stat().st_mtime) == mtime


def test_hidden_file_scenario(tmp_path, make_config, event_bus, make_codec, audio_file):
    src = tmp_path / "src"
    audio_file(src / "a.flac", mtime=1_450_000_000.0)
    audio_file(src / "b.wav", mtime=1_450_000_060.0)
    audio_file(src / "._c.flac")

    dry = _run(make_config(dry_run=True), event_bus, make_codec())
    assert dry.summary.total_discovered == 2
    assert dry.summary.by_status == {OutcomeStatus.DRY_RUN_PLANNED: 2}
    assert not (tmp_path / "dst").exists()

    real = _run(make_config(), event_bus, make_codec())
    assert real.summary.by_status == {OutcomeStatus.CONVERTED: 2}
    assert sorted(_tree(tmp_path / "dst")) == ["a.mp3", "b.mp3"]
    assert int((tmp_path / "dst" / "a.mp3").stat().st_mtime) == 1_450_000_000
    assert int((tmp_path / "dst" / "b.mp3").stat().st_mtime) == 1_450_000_060

    codec = make_codec()
    again = _run(make_config(), event_bus, codec)
    assert again.summary.by_status == {OutcomeStatus.SKIPPED: 2}
    assert codec.converted == []


def test_second_run_is_a_no_op(music_library, make_config, event_bus, make_codec):
    config = make_config()
    first = _run(config, event_bus, make_codec())
    before = _tree(config.target_dir)

    codec = make_codec()
    second = _run(config, event_bus, codec)

    assert first.summary.succeeded == 4
    assert second.summary.skipped == 4
    assert second.summary.by_status == {OutcomeStatus.SKIPPED: 4}
    assert codec.converted == []
    assert _tree(config.target_dir) == before


def test_resume_only_redoes_corrupt_outputs(music_library, make_config, event_bus, make_codec):
    _run(make_config(), event_bus, make_codec())
    dst = make_config().target_dir
    corrupt = dst / "Artist Name" / "Album (2001) [Deluxe]" / "01 - Intro.mp3"
    corrupt.write_bytes(corrupt.read_bytes()[:-2])

    codec = make_codec()
    report = _run(make_config(resume=True), event_bus, codec)

    assert report.summary.by_status == {OutcomeStatus.RESUMED_SKIP: 3, OutcomeStatus.RESUMED_RECONVERT: 1}
    assert [p.name for p in codec.converted] == ["01 - Intro.FLAC"]
    assert codec.probe(corrupt)


def test_failures_are_isolated_and_leave_no_partial_output(music_library, make_config, event_bus, make_codec, audio_file):
    audio_file(music_library / "broken.flac", content=b"BAD" + b"\x00" * 100)
    config = make_config(jobs=3)
    codec = make_codec()

    report = _run(config, event_bus, codec)

    assert report.exit_code == EXIT_SUCCESS
    assert report.summary.failed == 1
    assert report.summary.succeeded == 4
    assert not (config.target_dir / "broken.mp3").exists()
    assert not list(config.target_dir.rglob("*.tmp"))
    for path in config.target_dir.rglob("*.mp3"):
        assert codec.probe(path)


def test_dry_run_changes_nothing(music_library, make_config, event_bus, fake_codec):
    config = make_config(dry_run=True, resume=True)
    src_before = _tree(music_library)

    report = _run(config, event_bus, fake_codec)

    assert report.summary.planned == 4
    assert _tree(music_library) == src_before
    assert not config.target_dir.exists()


def test_every_item_reported_once(tmp_path, make_config, event_bus, make_codec, audio_file):
    for i in range(25):
        audio_file(tmp_path / "src" / f"disc{i % 3}" / f"{i:02d}.flac")
    outcomes = []
    lock = threading.Lock()

    def record(event):
        with lock:
            outcomes.append(event.outcome.item.source_path)

    event_bus.subscribe(ItemCompleted, record)

    report = _run(make_config(jobs=4), event_bus, make_codec())

    assert len(outcomes) == len(set(outcomes)) == 25
    assert report.summary.processed == 25


def test_progress_snapshots_are_monotonic(tmp_path, make_config, event_bus, make_codec, audio_file):
    class SlowFakeCodec(make_codec):
        def convert(self, source, target, bitrate, cancel_token=None):
            time.sleep(0.02)
            super().convert(source, target, bitrate, cancel_token=cancel_token)

    for i in range(12):
        audio_file(tmp_path / "src" / f"{i:02d}.wav")
    snapshots = []
    event_bus.subscribe(ProgressSnapshot, snapshots.append)

    _run(make_config(jobs=2, verbose=True, progress_interval_s=0.01), event_bus, SlowFakeCodec())

    assert snapshots
    counts = [s.completed for s in snapshots]
    assert counts == sorted(counts)
    assert all(s.total == 12 and s.completed <= 12 for s in snapshots)


def test_quiet_mode_publishes_no_snapshots(music_library, make_config, event_bus, fake_codec):
    snapshots = []
    event_bus.subscribe(ProgressSnapshot, snapshots.append)

    _run(make_config(verbose=False, progress_interval_s=0.01), event_bus, fake_codec)

    assert snapshots == []


@pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
def test_unwritable_target_is_fatal(music_library, make_config, event_bus, fake_codec, tmp_path):
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0o500)
    try:
        report = _run(make_config(target_dir=locked / "out"), event_bus, fake_codec)
    finally:
        locked.chmod(0o755)

    assert report.state == RunState.FATAL_ERROR
    assert fake_codec.converted == []
