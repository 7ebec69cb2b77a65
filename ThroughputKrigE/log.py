"""
Logging configuration for ThroughputKrigE.

Every module logs through ``logging.getLogger(__name__)``, so all of them sit
under the package logger configured here.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOGGER_NAME = "ThroughputKrigE"


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())
    # Handlers live on the package logger only; the root logger is left alone.
    logger.propagate = False

    # Repeated calls only adjust the level.
    if not logger.handlers:
        fmt = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        logger.addHandler(stream)

        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / "throughputkrige.log", encoding="utf-8")
            file_handler.setFormatter(fmt)
            logger.addHandler(file_handler)

    for handler in logger.handlers:
        handler.setLevel(level.upper())
    return logger
