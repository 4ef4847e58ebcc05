"""Unit tests for logging infrastructure."""
import logging
from mlc.infrastructure.logging import setup_logging


def test_setup_logging_creates_log_file(tmp_path):
    log_file = tmp_path / "logs" / "convert.log"

    logger = setup_logging(log_file, debug=False)

    assert isinstance(logger, logging.Logger)
    assert log_file.exists()


def test_setup_logging_debug_mode(tmp_path):
    logger = setup_logging(tmp_path / "convert.log", debug=True)
    assert logger.getEffectiveLevel() == logging.DEBUG


def test_setup_logging_normal_mode(tmp_path):
    logger = setup_logging(tmp_path / "convert.log", debug=False)
    assert logger.getEffectiveLevel() == logging.INFO


def test_setup_logging_appends(tmp_path):
    log_file = tmp_path / "convert.log"
    log_file.write_text("previous run\n")

    setup_logging(log_file)
    logging.getLogger("mlc.test").info("second run")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = log_file.read_text()
    assert content.startswith("previous run\n")
    assert "second run" in content
    assert " - INFO - " in content


def test_setup_logging_without_path_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    setup_logging(None)
    logging.getLogger("mlc.test").info("nowhere")

    assert list(tmp_path.iterdir()) == []
    assert all(isinstance(h, logging.NullHandler) for h in logging.getLogger().handlers)
