"""Logging configuration for Pantry Tracker."""

import logging
import sys

PACKAGE_LOGGER = "pantry_tracker"
HANDLER_NAME = "pantry_tracker.stderr"


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Configure the package logger with consistent formatting.

    Safe to call more than once: the previous handler is replaced by one bound
    to the current stderr instead of adding a second one. Logs go to stderr so that
    ``--json`` output on stdout stays machine readable.

    Args:
        level: Logging level, as an int or a name such as "DEBUG".

    Returns:
        The package logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for existing in list(logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)

    return logger
