"""Tests for config-driven logging setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from goal_ledger_recon.config import LoggingConfig
from goal_ledger_recon.utils.logging_config import PACKAGE_LOGGER, setup_logging


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def test_defaults_come_from_logging_config():
    logger = setup_logging()

    assert logger.name == PACKAGE_LOGGER
    assert logger.level == logging.INFO
    (handler,) = logger.handlers
    assert handler.formatter._fmt == LoggingConfig().format


def test_level_and_format_from_settings():
    logger = setup_logging(LoggingConfig(level="warning", format="%(levelname)s %(message)s"))

    (handler,) = logger.handlers
    assert handler.level == logging.WARNING
    assert handler.formatter._fmt == "%(levelname)s %(message)s"


def test_verbose_overrides_level():
    logger = setup_logging(LoggingConfig(level="ERROR"), verbose=True)
    assert logger.handlers[0].level == logging.DEBUG


def test_rotating_file(tmp_path):
    log_file = tmp_path / "logs" / "recon.log"
    settings = LoggingConfig(file=str(log_file), max_bytes=2048, backup_count=2)

    logger = setup_logging(settings)
    logging.getLogger(f"{PACKAGE_LOGGER}.batch.runner").debug("batch leased")

    file_handler = next(h for h in logger.handlers if isinstance(h, RotatingFileHandler))
    assert (file_handler.maxBytes, file_handler.backupCount) == (2048, 2)
    file_handler.flush()
    assert "batch leased" in log_file.read_text()


def test_repeated_setup_replaces_handlers(tmp_path):
    settings = LoggingConfig(file=str(tmp_path / "recon.log"))

    setup_logging(settings)
    logger = setup_logging(settings)

    assert len(logger.handlers) == 2
