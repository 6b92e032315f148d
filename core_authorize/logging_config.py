"""Process-wide loguru configuration.

Modules log with ``from loguru import logger`` and pass structured details as
keyword arguments, which loguru keeps in the record's ``extra``::

    logger.info("Authorization granted", client_id=client_id, scopes=scopes)

:func:`setup_logging` replaces loguru's default sink with a single stderr sink:
plain text with the extra fields appended, or one JSON document per line when
``LOG_FORMAT=json``.
"""

from typing import Optional
import sys

from loguru import logger

from .constants import LOG_FORMAT, LOG_LEVEL

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level> {extra}"
)

_configured = False


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None, force: bool = False) -> None:
    """Install the stderr sink. Later calls are no-ops unless ``force`` is set."""
    global _configured
    if _configured and not force:
        return

    level = (level or LOG_LEVEL).upper()
    fmt = (fmt or LOG_FORMAT).lower()

    logger.remove()
    if fmt == "json":
        logger.add(sys.stderr, level=level, serialize=True, backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level, format=TEXT_FORMAT, backtrace=False, diagnose=False)

    _configured = True
    logger.debug("Logging configured", level=level, format=fmt)
