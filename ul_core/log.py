from __future__ import annotations

import logging
import sys

LOGGER_NAMES = ("ul_core", "ul_api")
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> list[logging.Logger]:
    """Attach one stream handler to each project logger (library and API)."""

    loggers = []
    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
            logger.addHandler(handler)
        loggers.append(logger)
    return loggers
