import logging
from pathlib import Path

import pytest

from roomsync.settings import Settings
from roomsync.util.logging import (
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    LOGGER_NAME,
    setup_logging,
    setup_logging_from_settings,
)


@pytest.fixture(autouse=True)
def _restore_package_logger():
    pkg = logging.getLogger(LOGGER_NAME)
    level = pkg.level
    yield
    for handler in pkg.handlers[:]:
        handler.close()
        pkg.removeHandler(handler)
    pkg.setLevel(level)


def test_stdout_handler_on_package_logger_only():
    root_handlers = logging.getLogger().handlers[:]

    assert setup_logging() is None

    pkg = logging.getLogger(LOGGER_NAME)
    assert pkg.level == logging.INFO
    assert len(pkg.handlers) == 1
    handler = pkg.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert handler.formatter._fmt == LOG_FORMAT
    assert handler.formatter.datefmt == LOG_DATE_FORMAT
    assert logging.getLogger().handlers == root_handlers


def test_repeated_calls_replace_handlers():
    setup_logging()
    setup_logging(level="debug")
    pkg = logging.getLogger(LOGGER_NAME)
    assert len(pkg.handlers) == 1
    assert pkg.level == logging.DEBUG


def test_from_settings_writes_a_file(tmp_path):
    path = setup_logging_from_settings(Settings(LOG_DIR=str(tmp_path / "logs"), LOG_LEVEL="WARNING"))

    pkg = logging.getLogger(LOGGER_NAME)
    assert pkg.level == logging.WARNING
    assert path.parent == tmp_path / "logs"
    assert path.name.startswith("roomsync_")
    file_handler = pkg.handlers[1]
    assert isinstance(file_handler, logging.FileHandler)
    assert Path(file_handler.baseFilename) == path

    logging.getLogger("roomsync.session.manager").warning("room AB3K9Z closed")
    file_handler.flush()
    assert "[roomsync.session.manager] room AB3K9Z closed" in path.read_text()


def test_from_settings_without_log_dir():
    assert setup_logging_from_settings(Settings()) is None
