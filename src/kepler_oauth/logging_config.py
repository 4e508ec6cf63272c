"""Logging configuration for kepler-oauth.

Every module logs through a child of the ``kepler_oauth`` logger. The
handler installed by setup_logging carries a filter that masks Secret
arguments and sensitive mapping keys, so a token passed to a log call
by mistake is never written out.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import IO, TYPE_CHECKING, Any

from kepler_oauth.security import Secret, mask_sensitive_data

if TYPE_CHECKING:
    from kepler_oauth.config import Config

LOGGER_NAME = "kepler_oauth"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_logging_configured = False


class RedactingFilter(logging.Filter):
    """Mask secrets found in log record arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, Mapping):
            record.args = mask_sensitive_data(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(_mask(arg) for arg in record.args)
        return True


def _mask(value: Any) -> Any:
    if isinstance(value, Secret):
        return "***"
    if isinstance(value, Mapping):
        return mask_sensitive_data(value)
    return value


def setup_logging(config: Config, stream: IO[str] | None = None) -> None:
    """Attach the package handler.

    Idempotent: later calls only change the level.

    Args:
        config: Configuration containing the log_level setting
        stream: Destination, stderr by default
    """
    global _logging_configured

    log_level = getattr(logging, config.log_level.value)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)

    if _logging_configured:
        for handler in logger.handlers:
            handler.setLevel(log_level)
        return

    logger.handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)

    # Embedding applications keep control of the root logger
    logger.propagate = False
    _logging_configured = True

    logger.debug("Logging configured with level %s", config.log_level.value)


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package logger.

    Args:
        name: Usually __name__ of the calling module
    """
    if name.startswith(LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Remove the package handler so setup_logging can run again."""
    global _logging_configured
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
    _logging_configured = False
