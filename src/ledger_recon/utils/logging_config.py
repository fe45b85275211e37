"""Logging setup for reconciliation runs."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"

# SQLAlchemy logs every statement at INFO on this logger
SQL_LOGGER = "sqlalchemy.engine"


def level_from_name(name: str, default: int = logging.INFO) -> int:
    """Map a configured level name such as ``"debug"`` to its numeric value."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
    sql_echo: bool = False,
) -> logging.Logger:
    """
    Configure the ``ledger_recon`` logger tree.

    Args:
        level: Console logging level
        log_file: Optional rotating log file; receives every level
        log_format: Console format string
        sql_echo: Let SQL statements through at INFO

    Returns:
        The package logger
    """
    logger = logging.getLogger("ledger_recon")
    logger.setLevel(logging.DEBUG if log_file else level)

    # Repeated CLI invocations in one process must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format or DEFAULT_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    logging.getLogger(SQL_LOGGER).setLevel(logging.INFO if sql_echo else logging.WARNING)
    return logger
