from __future__ import annotations

import logging
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root ``timecapsule`` logger.

    The level defaults to ``TIMECAPSULE_LOG_LEVEL`` via settings.
    """
    if level is None:
        from timecapsule.core.settings import get_settings

        level = get_settings().runtime.log_level

    logger = logging.getLogger("timecapsule")
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
