# app/utils/my_logging.py
"""Logging configuration for the scheduling console"""
import logging
import sys
from typing import Optional

from app.config.settings import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that drown out engine decisions at INFO
NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "uvicorn.access",
]


def resolve_log_level(level_name: Optional[str]) -> int:
    """Map a level name from config to a logging level, defaulting to INFO"""
    if not level_name:
        return logging.INFO
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(verbose: bool = True, level_name: Optional[str] = None):
    """Configure application logging.

    ``verbose=False`` keeps scheduling decisions at WARNING and silences the
    HTTP client and server access logs entirely.
    """
    settings = get_settings()

    if verbose:
        level = resolve_log_level(level_name or settings.LOG_LEVEL)
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    logging.getLogger("app").setLevel(level)

    for name in NOISY_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(logging.WARNING if verbose else logging.ERROR)
        if not verbose:
            logger.propagate = False
