"""Map Pydantic records to and from Excel worksheets with data validations."""

import logging
import logging.handlers
import os
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

try:
    __version__ = version("xlsxmap")
except PackageNotFoundError:  # pragma: no cover
    # package is not installed
    __version__ = "0.0.0"

# All module loggers (xlsxmap.xlsx_reader, ...) are children of this logger.
# Without configuration by the application it stays silent.
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

CONSOLE_HANDLER_NAME = "xlsxmap-console"
FILE_HANDLER_NAME = "xlsxmap-file"
LOGLEVEL_ENV = "XLSXMAP_LOGLEVEL"


def setup_logging(
    loglevel: int = logging.INFO, logfile: Path | None = None
) -> logging.Logger:
    """
    Send the log messages of xlsxmap to the console and optionally a file.

    Only the "xlsxmap" logger is configured, the root logger of the
    application is not touched. Repeated calls replace the handlers of the
    previous call. The environment variable XLSXMAP_LOGLEVEL overrides
    the given loglevel.
    """
    loglevel_name = os.getenv(LOGLEVEL_ENV, "").strip().upper()
    if loglevel_name in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        loglevel = getattr(logging, loglevel_name)

    for handler in list(logger.handlers):
        if handler.get_name() in (CONSOLE_HANDLER_NAME, FILE_HANDLER_NAME):
            logger.removeHandler(handler)
            handler.close()

    logger.setLevel(loglevel)

    ch = logging.StreamHandler()
    ch.set_name(CONSOLE_HANDLER_NAME)
    ch.setFormatter(logging.Formatter("%(levelname)-8s|%(message)s"))
    logger.addHandler(ch)

    if logfile is not None:
        fh = logging.handlers.RotatingFileHandler(
            logfile, maxBytes=100000, backupCount=5
        )
        fh.set_name(FILE_HANDLER_NAME)
        fh.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s|%(name)-20s|%(levelname)-8s|%(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(fh)

    return logger
