"""Logging configuration for the option monitor.

Sets up structured JSON output with connection ID injection. Entry points
call configure_logging() once at startup; library modules only ever use
``logging.getLogger(__name__)``.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="option-monitor", log_level="INFO")
    >>> logger.info("Service started", extra={"context": {"port": 8010}})
"""

import logging
import sys
from typing import Optional

from libs.common.logging.context import get_connection_id
from libs.common.logging.formatter import JSONFormatter


class ConnectionIDFilter(logging.Filter):
    """Logging filter that stamps each record with the current connection ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.connection_id = get_connection_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
) -> logging.Logger:
    """Configure structured JSON logging on the root logger.

    Replaces any existing root handlers with a single stdout handler that
    uses JSONFormatter and ConnectionIDFilter.

    Args:
        service_name: Name reported in the ``service`` field
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether to include context dict in output

    Returns:
        Configured root logger instance

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(
        JSONFormatter(
            service_name=service_name,
            include_context=include_context,
        )
    )
    handler.addFilter(ConnectionIDFilter())

    root_logger.addHandler(handler)

    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(max(numeric_level, logging.INFO))

    return root_logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance by name (root logger if None)."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log a message with additional context fields.

    Context fields end up in the "context" dict of the JSON output.

    Example:
        >>> log_with_context(logger, "INFO", "Stream connected", ticker="AAPL", date="2025-10-21")
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"context": context_fields})
