"""Centralized logging configuration."""

import logging
from typing import Optional

from config import settings


def setup_logging(level: Optional[str] = None) -> None:
    """Configure logging for the application.

    Sets the root logger level from ``level`` or settings.LOG_LEVEL and
    keeps third-party loggers at WARNING. Balance sync modules follow
    the root level, so ``DEBUG`` shows per-day valuation detail.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        force=True,
    )

    for name in (
        "sqlalchemy.engine",
        "sqlalchemy.pool",
        "urllib3",
        "yfinance",
        "peewee",
        "httpx",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)
