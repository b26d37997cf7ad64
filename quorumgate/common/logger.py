"""Logging setup for QuorumGate.

The package logger ``quorumgate`` carries the handlers; engine modules log
through ``logging.getLogger(__name__)`` and propagate to it. Timestamps are
ISO 8601 so audit rows and log lines line up.
"""

import logging
import logging.handlers
import os
from typing import List, Optional

PACKAGE_LOGGER = "quorumgate"

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
ISO_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Third-party loggers that drown out approval events at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def _resolve_level(level: str) -> int:
    level_upper = level.upper()
    if level_upper not in LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(LEVELS)}")
    return getattr(logging, level_upper)


def _handlers(
    name: str,
    log_dir: str,
    file_logging: bool,
    console_logging: bool,
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if file_logging:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        ))
    if console_logging:
        handlers.append(logging.StreamHandler())
    return handlers


def setup_logger(
    name: str = PACKAGE_LOGGER,
    log_dir: str = "./logs",
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    file_logging: bool = False,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Set up a logger with rotating file and console handlers.

    Calling it again for a configured logger only updates the level.

    Args:
        name: Logger name (the package root by default)
        log_dir: Directory for log files, one ``<name>.log`` per logger
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string
        date_format: Custom date format string (ISO 8601 by default)
        file_logging: Enable file logging
        console_logging: Enable console logging
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    if logger.handlers:
        return logger

    formatter = logging.Formatter(log_format or LOG_FORMAT, datefmt=date_format or ISO_DATE_FORMAT)
    for handler in _handlers(name, log_dir, file_logging, console_logging, max_bytes, backup_count):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def configure_from_settings(settings) -> logging.Logger:
    """Configure the package logger from application settings.

    Below DEBUG, HTTP client and SQL engine chatter is capped at WARNING.
    """
    logger = setup_logger(
        PACKAGE_LOGGER,
        log_dir=settings.log_dir,
        level=settings.log_level,
        file_logging=settings.log_to_file,
    )
    if logger.level > logging.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the package logger, e.g. ``get_logger("api")``."""
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
