"""Tests for logging configuration."""

import logging
import logging.handlers

import pytest

from scribed.logging_setup import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_console_and_file_handlers(tmp_path):
    log_file = tmp_path / "logs" / "scribed.log"

    setup_logging("DEBUG", log_file)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(
        isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers
    )
    logging.getLogger("scribed.test").info("written to file")
    for handler in root.handlers:
        handler.flush()
    assert "written to file" in log_file.read_text()


def test_repeated_setup_replaces_handlers(tmp_path):
    setup_logging("INFO", tmp_path / "a.log")
    setup_logging("WARNING")

    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1
    assert logging.getLogger("httpx").level == logging.WARNING
