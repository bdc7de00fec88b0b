"""
Account and daily statistics records.

Both are stored as JSON documents; datetimes round-trip as ISO strings via
``model_dump(mode="json")`` / ``model_validate``.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class DailyStatus(str, Enum):
    """
    Daily circuit breaker state for one account.

    State Transitions:
        ACTIVE → ACTIVE: ordinary trade result
        ACTIVE → PROFIT_HIT: profit_today reached profit_target
        ACTIVE → LOSS_HIT: loss_today reached max_loss
        PROFIT_HIT / LOSS_HIT: terminal for the day
    """

    ACTIVE = "active"
    PROFIT_HIT = "profit_hit"
    LOSS_HIT = "loss_hit"


class Account(BaseModel):
    """EA account that receives commands."""

    id: str
    token: str
    balance: float | None = None
    risk_profile: str = "conservative"
    active: bool = True
    last_seen: datetime | None = None
    last_balance_update: datetime | None = None
    created_at: datetime | None = None


class DailyStats(BaseModel):
    """
    Per-account, per-UTC-day trading totals and limits.

    Document id is ``"{account_id}:{date}"``. ``recorded_commands`` lists the
    commands whose results are already folded in.
    """

    id: str
    account_id: str
    date: str = Field(..., description="UTC day, YYYY-MM-DD")
    start_balance: float
    current_balance: float
    profit_today: float = 0.0
    loss_today: float = 0.0
    profit_target: float
    max_loss: float
    trades_executed: int = 0
    trades_won: int = 0
    trades_lost: int = 0
    status: DailyStatus = DailyStatus.ACTIVE
    archived: bool = False
    recorded_commands: list[str] = Field(default_factory=list)
    created_at: datetime
    last_updated: datetime

    @staticmethod
    def make_id(account_id: str, date: str) -> str:
        return f"{account_id}:{date}"

    @property
    def can_trade(self) -> bool:
        return self.status == DailyStatus.ACTIVE


class DailyLimitsView(BaseModel):
    """Read-only view of where an account stands against today's limits."""

    account_id: str
    date: str
    can_trade: bool
    status: DailyStatus
    profit_today: float
    loss_today: float
    profit_target: float
    max_loss: float
    remaining_profit: float
    remaining_loss: float
    current_balance: float
    trades_executed: int


class RolloverResult(BaseModel):
    """Outcome of archiving one account's previous day."""

    account_id: str
    date: str
    archived: bool
    new_balance: float | None = None
