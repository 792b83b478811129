"""Tests for the logging setup of the xlsxmap package logger."""

import logging
import logging.handlers

import pytest

import xlsxmap
from xlsxmap import setup_logging


@pytest.fixture
def package_logger():
    """The xlsxmap logger, restored to its import state after the test."""
    logger = logging.getLogger("xlsxmap")
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def test_silent_by_default(package_logger):
    assert any(isinstance(h, logging.NullHandler) for h in package_logger.handlers)


def test_logfile(tmp_path, package_logger):
    logfile = tmp_path / "xlsxmap.log"
    root_handlers = list(logging.getLogger().handlers)

    assert setup_logging(logging.DEBUG, logfile) is package_logger
    assert package_logger.level == logging.DEBUG
    # the application's root logger is left alone
    assert logging.getLogger().handlers == root_handlers

    logging.getLogger("xlsxmap.xlsx_reader").debug("Opened workbook %s", "a.xlsx")
    for handler in package_logger.handlers:
        handler.flush()
    content = logfile.read_text()
    assert "|xlsxmap.xlsx_reader" in content
    assert "|DEBUG   |Opened workbook a.xlsx" in content


def test_repeated_setup_replaces_handlers(tmp_path, package_logger):
    setup_logging(logfile=tmp_path / "first.log")
    setup_logging(logfile=tmp_path / "second.log")

    names = [h.get_name() for h in package_logger.handlers]
    assert names.count(xlsxmap.CONSOLE_HANDLER_NAME) == 1
    assert names.count(xlsxmap.FILE_HANDLER_NAME) == 1
    (file_handler,) = [
        h
        for h in package_logger.handlers
        if isinstance(h, logging.handlers.RotatingFileHandler)
    ]
    assert file_handler.baseFilename.endswith("second.log")


@pytest.mark.parametrize(
    ("env_value", "expected"),
    [("warning", logging.WARNING), (" debug ", logging.DEBUG), ("loud", logging.INFO)],
)
def test_loglevel_from_environment(monkeypatch, package_logger, env_value, expected):
    monkeypatch.setenv("XLSXMAP_LOGLEVEL", env_value)
    setup_logging()
    assert package_logger.level == expected
