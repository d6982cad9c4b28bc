"""Logging configuration."""

import logging
import sys
from typing import Any, Dict, Optional

from lead_notifier.config import get_settings


def setup_logging() -> None:
    """Configure logging for the service."""
    settings = get_settings()

    logger = logging.getLogger("lead_notifier")
    logger.setLevel(settings.log_level)

    # Avoid stacking handlers when the worker and API both initialise logging
    if logger.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.log_level)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get logger instance."""
    return logging.getLogger(f"lead_notifier.{name}")


def log_error(exc: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an exception with request context attached."""
    logger = get_logger("errors")
    logger.error(
        f"{type(exc).__name__}: {exc}",
        extra={"context": context or {}},
        exc_info=exc,
    )
