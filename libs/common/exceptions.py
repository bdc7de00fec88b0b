"""
Exception hierarchy for the signal bridge.

Scoring and sizing never raise; everything that can fail at a service
boundary raises one of the classes below so callers can decide between
"reject", "skip and continue" and "tell the client to try again".

    SignalBridgeError
    ├── ValidationError     malformed signal or request, never retried
    ├── UpstreamError       generator unreachable or retries exhausted
    ├── StoreError          persistence failure
    └── StaleCommandError   processing command with no terminal report
"""

from datetime import datetime
from typing import Any


class SignalBridgeError(Exception):
    """
    Base exception for all signal bridge errors.

    Example:
        >>> try:
        ...     await dispatcher.distribute(signal)
        ... except SignalBridgeError as e:
        ...     logger.error(f"Distribution failed: {e}")
    """

    pass


class ValidationError(SignalBridgeError):
    """
    Raised when an input signal or request is malformed.

    Rejected immediately. The upstream client does not retry on it and the
    HTTP layer maps it to 400.

    Example:
        >>> if payload.get("entry") is None:
        ...     raise ValidationError("Upstream payload missing entry price")
    """

    pass


class UpstreamError(SignalBridgeError):
    """
    Raised when the upstream signal generator cannot produce a signal.

    Covers non-retryable HTTP failures and exhaustion of the retry budget.
    The scheduler logs it and moves on to the next timeframe/tier.

    Attributes:
        last_error: The underlying exception from the final attempt
        attempts: Number of attempts made before giving up
    """

    def __init__(self, message: str, last_error: BaseException | None = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class StoreError(SignalBridgeError):
    """
    Raised when the document store rejects a read or write.

    A failed distribution batch drops the whole fan-out for that signal. A
    failed poll/report conditional update is surfaced to the EA as 503 so it
    retries with the same credential.
    """

    pass


class StaleCommandError(SignalBridgeError):
    """
    A command stuck in ``processing`` past the staleness window.

    This is a reportable condition rather than something poll raises: the
    EA may have placed the trade before crashing, so the bridge never
    retries or fails the command on its own. Instances are produced by the
    reconciliation listing for operators.

    Attributes:
        command_id: The stuck command
        account_id: Owner of the command
        picked_up_at: When the EA claimed it
    """

    def __init__(self, command_id: str, account_id: str, picked_up_at: datetime | None):
        self.command_id = command_id
        self.account_id = account_id
        self.picked_up_at = picked_up_at
        super().__init__(
            f"Command {command_id} for account {account_id} has been processing since "
            f"{picked_up_at.isoformat() if picked_up_at else 'unknown'} without a report"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "command_id": self.command_id,
            "account_id": self.account_id,
            "picked_up_at": self.picked_up_at.isoformat() if self.picked_up_at else None,
            "message": str(self),
        }
