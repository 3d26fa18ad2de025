import logging
from logging.handlers import RotatingFileHandler

import pytest

from repocache.cli.utils.logging import configure_logging, logger
from repocache.config import LoggingConfig


@pytest.fixture
def clean_logger():
    saved = list(logger.handlers), logger.level
    logger.handlers = []
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers, level = saved
    logger.setLevel(level)


@pytest.mark.short
def test_debug_flag(clean_logger):
    configure_logging(True)
    assert clean_logger.level == logging.DEBUG
    assert len(clean_logger.handlers) == 1

    configure_logging(False)
    assert clean_logger.level == logging.INFO
    assert len(clean_logger.handlers) == 1


@pytest.mark.short
def test_level_and_file_from_config(clean_logger, tmp_path):
    config = LoggingConfig(
        level="warning",
        file=str(tmp_path / "logs" / "repocache.log"),
        max_size_mb=1,
        backup_count=2,
        console_output=False,
    )

    configure_logging(False, config)
    configure_logging(False, config)

    assert clean_logger.level == logging.WARNING
    assert len(clean_logger.handlers) == 1
    handler = clean_logger.handlers[0]
    assert isinstance(handler, RotatingFileHandler)
    assert handler.maxBytes == 1024 * 1024
    assert handler.backupCount == 2

    logging.getLogger("repocache.git.clone").warning("disk nearly full")
    handler.flush()
    assert "disk nearly full" in (tmp_path / "logs" / "repocache.log").read_text()
