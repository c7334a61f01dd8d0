"""Centralized logging configuration."""

import logging
from typing import Optional

from config import settings

_NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpcore",
    "urllib3",
)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure logging for the refresh service.

    Sets the root logger level from ``level`` (defaults to
    settings.LOG_LEVEL) and quiets third-party loggers. ``httpx`` emits one
    INFO line per request, which is only useful when debugging price-feed
    retries, so it stays at WARNING unless the root level is DEBUG.
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, level_name),
        force=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("httpx").setLevel(
        logging.INFO if level_name == "DEBUG" else logging.WARNING
    )
