"""
Unified Logging Module
======================

Single logging entry point for the intake package.

Usage:
    from intake.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Extracting case: %s", case_id)
    logger.warning("Reviewer abstained: %s", reason)
"""

import logging
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = logging.INFO
ROOT_LOGGER_NAME = "intake"

_root_configured = False


def _configure_root_logger() -> None:
    """
    Attach a console handler to the project root logger.

    Runs once; guarded by the module flag ``_root_configured``.
    """
    global _root_configured
    if _root_configured:
        return

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(DEFAULT_LEVEL)
    console_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT))

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(DEFAULT_LEVEL)
    root_logger.addHandler(console_handler)
    root_logger.propagate = False

    _root_configured = True


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Return the logger for *name*, configuring the project root on first use.

    Args:
        name: usually the caller's ``__name__``
        level: optional explicit level for this logger
    """
    _configure_root_logger()
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger


def set_level(level: int, logger_name: Optional[str] = None) -> None:
    """
    Change the level of one logger, or of the whole project when *logger_name* is None.

    Examples:
        set_level(logging.DEBUG)                              # everything under intake
        set_level(logging.DEBUG, "intake.consensus.committee")  # committee only
    """
    _configure_root_logger()
    target = logging.getLogger(logger_name or ROOT_LOGGER_NAME)
    target.setLevel(level)
    if not logger_name:
        for handler in target.handlers:
            handler.setLevel(level)
