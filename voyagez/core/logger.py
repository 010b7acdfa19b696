"""
Centralized logger configuration for Voyagez.

Provides a unified logging interface that can be customized by the user.
By default, uses Python's standard logging with the 'voyagez' namespace.

Usage:
    # Use default logger
    from voyagez.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Message")

    # Set custom logger (e.g., structlog, loguru)
    from voyagez.core.logger import set_logger
    set_logger(my_logger)
"""

import logging
import os
from typing import Any

# Global logger instance - defaults to standard logging
_custom_logger: Any = None


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all Voyagez components.

    Args:
        logger: A logger instance (e.g., structlog logger, loguru logger)
                Must support debug/info/warning/error/exception methods.
                Pass None to restore standard logging.
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = "voyagez") -> Any:
    """
    Get a logger instance.

    If a custom logger was set via set_logger(), returns that.
    Otherwise, returns a standard Python logger with the given name.
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)

    # Ensure we have at least a NullHandler to avoid "No handler found" warnings
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def configure_default_logging(  # pragma: no cover
    level: int | str | None = None,
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """
    Configure basic console logging for long-running entry points.

    Args:
        level: Logging level; defaults to the LOG_LEVEL environment variable or INFO
        format_string: Log message format
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    if isinstance(level, str):
        level = getattr(logging, level, logging.INFO)

    logging.basicConfig(level=level, format=format_string)
    logging.getLogger("voyagez").setLevel(level)
