from __future__ import annotations

import os
import sys

from loguru import logger

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Initialize the logger
logger.remove()

fmt = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> || <level>{message}</level>"

logger.add(
    sys.stderr,
    format=fmt,
    colorize=True,
    filter="firesim",
    level=LOG_LEVEL,
)

logger.debug("Logger initialized")
