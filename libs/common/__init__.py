"""Common utilities and exceptions."""

from libs.common.exceptions import (
    SignalBridgeError,
    StaleCommandError,
    StoreError,
    UpstreamError,
    ValidationError,
)

__all__ = [
    "SignalBridgeError",
    "StaleCommandError",
    "StoreError",
    "UpstreamError",
    "ValidationError",
]
