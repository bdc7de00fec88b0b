"""Process-wide logging setup.

Call :func:`configure_logging` once at startup (the FastAPI app does this on
import). Library modules only ever call ``logging.getLogger(__name__)``.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="signal_bridge", log_level="INFO")
    >>> logger.info("Bridge started", extra={"context": {"port": 8010}})
"""

import logging
import sys

from libs.common.logging.context import get_trace_id
from libs.common.logging.formatter import JSONFormatter


class TraceIDFilter(logging.Filter):
    """Stamp the current context's trace ID onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
) -> logging.Logger:
    """Install a JSON stdout handler on the root logger.

    Existing root handlers are removed so repeated calls (tests, reloads) do
    not duplicate output.

    Args:
        service_name: Emitted as the ``service`` field
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        include_context: Whether ``extra`` fields are emitted

    Returns:
        The configured root logger

    Raises:
        ValueError: If log_level is not a known level name
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service_name=service_name, include_context=include_context))
    handler.addFilter(TraceIDFilter())

    root_logger.addHandler(handler)

    return root_logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Shorthand for ``logging.getLogger``."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log ``message`` with ``context_fields`` under the ``context`` key.

    Example:
        >>> log_with_context(logger, "WARNING", "Account skipped", account_id="acc-1",
        ...                  status="loss_hit")
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"context": context_fields})
