import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from repocache.config import LoggingConfig


logger = logging.getLogger("repocache")

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(debug: bool, logging_config: Optional[LoggingConfig] = None):
    """
    Configures the logging system based on the debug flag.

    Messages go to stdout unformatted. When a logging config names a file, a
    rotating file handler is attached too.
    """
    if debug:
        log_level = logging.DEBUG
    elif logging_config is not None:
        log_level = logging.getLevelName(logging_config.level.upper())
    else:
        log_level = logging.INFO
    logger.setLevel(log_level)

    console = logging_config is None or logging_config.console_output
    if console and not _has_handler(logger, logging.StreamHandler):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)

    if logging_config is not None and logging_config.file:
        if not _has_handler(logger, RotatingFileHandler):
            log_file = Path(logging_config.file).expanduser()
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=int(logging_config.max_size_mb * 1024 * 1024),
                backupCount=logging_config.backup_count,
            )
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            logger.addHandler(file_handler)


def _has_handler(log: logging.Logger, kind: type) -> bool:
    # RotatingFileHandler is itself a StreamHandler
    for handler in log.handlers:
        if kind is logging.StreamHandler and isinstance(handler, logging.FileHandler):
            continue
        if isinstance(handler, kind):
            return True
    return False
