"""Trace ID propagation for request correlation.

Every EA poll, execution report and scheduler cycle runs under a trace ID so
that all log lines produced by one unit of work (store round-trips, upstream
retries, fan-out) can be grouped together.

Example:
    >>> from libs.common.logging.context import LogContext, get_trace_id
    >>> with LogContext("cycle-2025-01-17T10") as trace_id:
    ...     get_trace_id() == trace_id
    True
"""

import contextvars
import uuid
from types import TracebackType

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

# HTTP header used on inbound requests and outbound upstream calls
TRACE_ID_HEADER = "X-Trace-ID"


def generate_trace_id() -> str:
    """Return a new UUID4 trace ID."""
    return str(uuid.uuid4())


def get_trace_id() -> str | None:
    """Return the trace ID bound to the current async context, if any."""
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Bind a trace ID to the current async context.

    Raises:
        ValueError: If trace_id is empty
    """
    if not trace_id:
        raise ValueError("Trace ID cannot be empty")
    _trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    """Remove the trace ID from the current context."""
    _trace_id_var.set(None)


def get_or_create_trace_id() -> str:
    """Return the current trace ID, generating and binding one if missing."""
    trace_id = get_trace_id()
    if trace_id is None:
        trace_id = generate_trace_id()
        set_trace_id(trace_id)
    return trace_id


class LogContext:
    """Scoped trace ID for a block of work.

    Used by the scheduler so each signal cycle gets its own trace ID; the
    previous value is restored on exit.

    Args:
        trace_id: Trace ID to bind. A new one is generated when None.
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or generate_trace_id()
        self.previous_trace_id: str | None = None

    def __enter__(self) -> str:
        self.previous_trace_id = get_trace_id()
        set_trace_id(self.trace_id)
        return self.trace_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.previous_trace_id is not None:
            set_trace_id(self.previous_trace_id)
        else:
            clear_trace_id()
