# =============================================
# File: farm2table/utils/logging.py
# Purpose: loguru sink configuration
# =============================================
import os

from loguru import logger

LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")
LOG_ROTATION = os.getenv("LOG_ROTATION", "10 MB")

_configured = False


def configure_logging() -> None:
    """Add the rotating file sink once per process; LOG_FILE="" keeps stderr only."""
    global _configured
    if _configured or not LOG_FILE:
        return
    logger.add(LOG_FILE, rotation=LOG_ROTATION, enqueue=True)
    _configured = True
