"""Logging setup for the valuation engine CLIs.

Library modules only call ``logging.getLogger(__name__)``. Each CLI calls
``setup_logging`` once so every ``valuation_engine.*`` logger shares one
stdout format (and optionally a log file).
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("urllib3", "asyncio", "fake_useragent")


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        return value if isinstance(value, int) else logging.INFO
    return level


def setup_logging(
    level: int | str | None = None,
    log_file: str | Path | None = None,
    module_name: str = "valuation_engine",
) -> logging.Logger:
    """Configure the package logger.

    Args:
        level: Level as int or name; defaults to ``LOG_LEVEL`` env, then INFO.
        log_file: Optional path that also receives every record.
        module_name: Logger to configure.

    Returns:
        The configured logger. Repeated calls leave existing handlers alone.
    """
    logger = logging.getLogger(module_name)
    if logger.handlers:
        return logger

    resolved = _resolve_level(level)
    logger.setLevel(resolved)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    return logger
