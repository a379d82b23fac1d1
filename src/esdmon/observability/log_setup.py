"""structlog configuration.

Application code logs through ``structlog.get_logger(__name__)`` with
snake_case event names. aiohttp logs through the standard library, which is
routed to the same stream at the same level.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

LEVEL_KEY = "logging.level"


def _level_number(level: str) -> int:
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level}")
    return number


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Install the structlog pipeline.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: "console" for human-readable output, "json" for one JSON
            object per line
    """
    level_no = _level_number(level)
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    logging.basicConfig(stream=sys.stderr, level=level_no, format="%(name)s %(levelname)s %(message)s")
    logging.getLogger().setLevel(level_no)


def on_config_updated(key: str, value: Any) -> None:
    """Config subscriber: apply a new log level without restart."""
    if key != LEVEL_KEY:
        return
    level_no = _level_number(value)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level_no))
    logging.getLogger().setLevel(level_no)
    structlog.get_logger(__name__).info("log_level_updated", level=value)
