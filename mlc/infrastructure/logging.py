import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_path: Optional[Path] = None, debug: bool = False) -> logging.Logger:
    """
    Setup logging configuration for MLC.

    The log file is an append-only side channel: without a path nothing is
    written anywhere and program behaviour is unchanged.

    Args:
        log_path: Optional path to the log file (opened in append mode)
        debug: If True, enable DEBUG level logging with detailed timings
    """
    level = logging.DEBUG if debug else logging.INFO

    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(log_file, mode='a', encoding='utf-8')]
    else:
        handlers = [logging.NullHandler()]

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    if log_path:
        logger.info(f"Logging initialized: {log_path} (debug={'ON' if debug else 'OFF'})")

    return logger
