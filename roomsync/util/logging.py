"""
Logging for the roomsync package: stdout plus an optional file.

Only the ``roomsync`` logger is configured, so an embedding game or server
keeps control of the root logger.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from roomsync.settings import Settings

LOGGER_NAME = "roomsync"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


def setup_logging(
    log_dir: Union[Path, str, None] = None,
    level: Union[int, str] = logging.INFO,
) -> Optional[Path]:
    """
    Attach a stdout handler (and a file handler when log_dir is given) to the
    package logger, replacing any from an earlier call.

    The file is named after the start time, e.g.
    logs/roomsync_2026-01-31_14-30-00.log. Returns its path, or None.
    """
    pkg_logger = logging.getLogger(LOGGER_NAME)
    pkg_logger.setLevel(level.upper() if isinstance(level, str) else level)
    for handler in pkg_logger.handlers[:]:
        handler.close()
        pkg_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    pkg_logger.addHandler(stdout_handler)

    if log_dir is None:
        return None

    dir_path = Path(log_dir).expanduser()
    dir_path.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(tz=timezone.utc).strftime(LOG_FILE_TIMESTAMP_FORMAT)
    file_path = dir_path / f"{LOGGER_NAME}_{timestamp}.log"
    file_handler = logging.FileHandler(file_path)
    file_handler.setFormatter(formatter)
    pkg_logger.addHandler(file_handler)
    return file_path


def setup_logging_from_settings(settings: "Settings") -> Optional[Path]:
    """LOG_LEVEL, and LOG_DIR when set."""
    return setup_logging(log_dir=settings.LOG_DIR or None, level=settings.LOG_LEVEL)
