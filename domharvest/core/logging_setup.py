"""Logging configuration for the domharvest package logger."""

import logging

PACKAGE_LOGGER = "domharvest"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "info") -> logging.Logger:
    """Set the level of the package logger.

    Handlers are left to the application (the CLI calls basicConfig).
    """
    try:
        numeric = _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}. Available: debug, info, warn, error")

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(numeric)
    return package_logger
