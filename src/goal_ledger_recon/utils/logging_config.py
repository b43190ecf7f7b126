"""Logging setup driven by the ``logging`` section of the reconciliation config."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from ..config import LoggingConfig

PACKAGE_LOGGER = "goal_ledger_recon"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"


def setup_logging(settings: Optional[LoggingConfig] = None, verbose: bool = False) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        settings: Level, console format and optional rotating log file.
            ``LoggingConfig()`` defaults apply when omitted.
        verbose: Log DEBUG to the console whatever ``settings.level`` says

    Returns:
        The ``goal_ledger_recon`` logger
    """
    settings = settings or LoggingConfig()
    level = logging.DEBUG if verbose else logging.getLevelName(settings.level)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    # Re-running setup replaces the handlers of the previous run
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(settings.format))
    logger.addHandler(console_handler)

    if settings.file:
        log_file = Path(settings.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=settings.max_bytes, backupCount=settings.backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)
        # The file captures DEBUG even when the console is quieter
        logger.setLevel(logging.DEBUG)

    return logger
