"""Logging configuration for the course-access service."""

import logging

from config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Configure the root logger once.

    Args:
        level: Level name such as ``INFO`` or ``DEBUG``.
    """
    global _configured
    if _configured:
        return
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    # Keep SQL statements out of the service log unless explicitly enabled
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
