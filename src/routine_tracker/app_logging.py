"""Logging configuration helpers."""

import logging


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure the package logger with a single stream handler.

    ``level`` may be a number or a level name such as ``"DEBUG"``.
    """
    logger = logging.getLogger("routine_tracker")
    logger.setLevel(level)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
