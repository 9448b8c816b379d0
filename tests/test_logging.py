from __future__ import annotations

import logging

from ul_core.log import LOG_FORMAT, setup_logging


def test_setup_logging_covers_library_and_api_loggers() -> None:
    setup_logging("debug")
    setup_logging("warning")

    for name in ("ul_core", "ul_api"):
        logger = logging.getLogger(name)
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert logger.handlers[0].formatter._fmt == LOG_FORMAT

    child = logging.getLogger("ul_api.app")
    assert child.getEffectiveLevel() == logging.WARNING
