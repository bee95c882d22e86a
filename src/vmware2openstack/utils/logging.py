"""Structured logging for vmware2openstack."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

ROOT_LOGGER = "vmware2openstack"


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_path=False,
            markup=True,
            rich_tracebacks=True,
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger


def set_log_level(level: str) -> None:
    """Set log level (DEBUG, INFO, WARNING, ERROR) for every project logger."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.getLogger(ROOT_LOGGER).setLevel(numeric)
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith(f"{ROOT_LOGGER}.") and isinstance(logger, logging.Logger):
            logger.setLevel(numeric)
