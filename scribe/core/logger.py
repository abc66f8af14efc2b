from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

ROOT_LOGGER = "scribe"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"


def setup_logging(
    log_dir: str = "logs",
    *,
    level: int = logging.INFO,
    max_bytes: int = 1_000_000,
    backup_count: int = 5,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the `scribe` logger tree.

    Every component logger (`scribe.telemetry.*`) reports through the handlers
    attached here: a rotating `scribe.log` under log_dir and, unless disabled,
    a console handler on stderr. Calling it again only adjusts the level.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    kinds = {type(h) for h in logger.handlers}
    if RotatingFileHandler not in kinds:
        fh = RotatingFileHandler(os.path.join(log_dir, f"{ROOT_LOGGER}.log"), maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(fh)
    if console and logging.StreamHandler not in kinds:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(ch)
    return logger


def component_logger(name: str, logger: logging.Logger | None = None) -> logging.Logger:
    """Return the injected logger, or the `scribe.telemetry.<name>` child logger."""
    if logger is not None:
        return logger
    return logging.getLogger(f"{ROOT_LOGGER}.telemetry.{name}")
