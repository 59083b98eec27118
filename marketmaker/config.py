"""
Environment-driven configuration and logging setup.

    MARKETMAKER_STATE      snapshot path (default ./marketmaker_state.json)
    MARKETMAKER_ADMIN_KEY  bearer key for admin endpoints (unset: admin off)
    MARKETMAKER_LOG_LEVEL  DEBUG / INFO / WARNING ... (default INFO)
"""

import logging
import os
import sys


STATE_PATH = os.environ.get("MARKETMAKER_STATE", "./marketmaker_state.json")
ADMIN_KEY = os.environ.get("MARKETMAKER_ADMIN_KEY", "")
LOG_LEVEL = os.environ.get("MARKETMAKER_LOG_LEVEL", "INFO")


def setup_logging(level: str | int | None = None) -> None:
    """
    Install one stderr handler on the package logger.

    stdout is left alone: the CLI prints its JSON replies there.
    Calling this again replaces the handler instead of stacking another.
    """
    level = level or LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logger = logging.getLogger("marketmaker")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(handler)
