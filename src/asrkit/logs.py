"""Logging setup for the asrkit package logger."""

import logging

PACKAGE_LOGGER = "asrkit"


def configure_logging(verbose: bool = True, level: int | str = logging.INFO) -> logging.Logger:
    """Set the package log level; ``verbose=False`` silences asrkit entirely.

    Handlers are left to the application, except that a stream handler is
    attached when nothing upstream would print the records.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")
    logger.setLevel(level if verbose else logging.CRITICAL + 1)
    if verbose and not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    return logger
