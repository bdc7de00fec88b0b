"""
Risk management library for the signal bridge.

This library provides:
- Risk profile and daily limit configuration
- Position sizing from balance, risk profile and stop distance
- Per-account daily profit/loss circuit breaker

Example:
    >>> from libs.risk_management import DailyRiskTracker, RiskConfig, RiskSizer
    >>>
    >>> config = RiskConfig()
    >>> sizer = RiskSizer(config)
    >>> tracker = DailyRiskTracker(store, config)
    >>>
    >>> if await tracker.can_dispatch("acc-1"):
    ...     lots = sizer.size(balance=1000, risk_profile="conservative", stop_distance_pips=50)
"""

from libs.risk_management.config import DailyLimits, RiskConfig, RiskProfile
from libs.risk_management.daily_tracker import DailyRiskTracker, apply_trade
from libs.risk_management.models import (
    Account,
    DailyLimitsView,
    DailyStats,
    DailyStatus,
    RolloverResult,
)
from libs.risk_management.sizing import RiskSizer, SizingResult

__all__ = [
    # Configuration
    "RiskConfig",
    "RiskProfile",
    "DailyLimits",
    # Sizing
    "RiskSizer",
    "SizingResult",
    # Daily limits
    "DailyRiskTracker",
    "apply_trade",
    # Records
    "Account",
    "DailyStats",
    "DailyStatus",
    "DailyLimitsView",
    "RolloverResult",
]
