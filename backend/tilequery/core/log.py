"""Logging setup for processes embedding tilequery.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
host process decides where records go. configure_logging() is a
convenience for scripts and tile servers that have no logging setup of
their own.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tilequery.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: config.Settings) -> logging.Logger:
    """Attach a stream handler to the ``tilequery`` logger.

    Calling it again only updates the level.

    Returns:
        The package logger.
    """
    logger = logging.getLogger("tilequery")
    logger.setLevel(settings.log_level.upper())
    if not any(
        getattr(h, "_tilequery_handler", False) for h in logger.handlers
    ):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tilequery_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
