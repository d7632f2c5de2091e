# =============================================
# File: storefront/utils/logging.py
# Purpose: Logging configuration (optional loguru file sink)
# =============================================

import os

from loguru import logger

_configured = False


def configure_logging() -> None:
    """Attach a rotating file sink when LOG_FILE is set. Safe to call more than once."""
    global _configured
    path = os.getenv("LOG_FILE")
    if _configured or not path:
        return
    logger.add(path, rotation="10 MB", level=os.getenv("LOG_LEVEL", "INFO").upper())
    _configured = True
