"""Structured logging for the option monitor.

JSON log output with a per-connection correlation ID, so all lines written
while one stream connection was alive can be grouped together.

Usage:
    # At process startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="option-monitor", log_level="INFO")

    # Anywhere else
    from libs.common.logging import get_logger, log_with_context
    logger = get_logger(__name__)
    log_with_context(logger, "INFO", "Stream connected", ticker="AAPL")
"""

from libs.common.logging.config import (
    ConnectionIDFilter,
    configure_logging,
    get_logger,
    log_with_context,
)
from libs.common.logging.context import (
    ConnectionLogContext,
    clear_connection_id,
    generate_connection_id,
    get_connection_id,
    set_connection_id,
)
from libs.common.logging.formatter import JSONFormatter

__all__ = [
    # Configuration
    "configure_logging",
    "get_logger",
    "log_with_context",
    "ConnectionIDFilter",
    # Connection ID management
    "generate_connection_id",
    "get_connection_id",
    "set_connection_id",
    "clear_connection_id",
    "ConnectionLogContext",
    # Formatter (for advanced usage)
    "JSONFormatter",
]
