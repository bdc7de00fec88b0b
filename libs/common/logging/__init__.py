"""Structured JSON logging with trace ID propagation.

Usage:
    # At service startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="signal_bridge", log_level="INFO")

    # Anywhere
    logger = logging.getLogger(__name__)
    logger.info("Command claimed", extra={"account_id": "acc-1", "command_id": "cmd_..."})
"""

from libs.common.logging.config import (
    configure_logging,
    get_logger,
    log_with_context,
)
from libs.common.logging.context import (
    TRACE_ID_HEADER,
    LogContext,
    clear_trace_id,
    generate_trace_id,
    get_or_create_trace_id,
    get_trace_id,
    set_trace_id,
)
from libs.common.logging.formatter import JSONFormatter
from libs.common.logging.http_client import TracedHTTPXClient, get_traced_client
from libs.common.logging.middleware import add_trace_id_middleware

__all__ = [
    "configure_logging",
    "get_logger",
    "log_with_context",
    "generate_trace_id",
    "get_trace_id",
    "set_trace_id",
    "clear_trace_id",
    "get_or_create_trace_id",
    "LogContext",
    "TRACE_ID_HEADER",
    "JSONFormatter",
    "TracedHTTPXClient",
    "get_traced_client",
    "add_trace_id_middleware",
]
