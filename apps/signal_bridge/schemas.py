"""
Pydantic schemas for the Signal Bridge HTTP API.

EA-facing models use camelCase field names on the wire (the EA was written
against that contract); operator endpoints use snake_case.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from apps.signal_bridge.models import DistributionResult, TradeInstruction
from libs.risk_management import DailyStatus
from libs.signal_quality import ScoreBreakdown

# ==============================================================================
# EA Endpoints
# ==============================================================================


class PollResponse(BaseModel):
    """Response to ``GET /api/v1/commands``."""

    model_config = ConfigDict(populate_by_name=True)

    has_command: bool = Field(..., alias="hasCommand")
    command_id: str | None = Field(None, alias="commandId")
    type: str | None = None
    instruction: TradeInstruction | None = None


class ExecutionReport(BaseModel):
    """Body of ``POST /api/v1/execution``."""

    model_config = ConfigDict(populate_by_name=True)

    command_id: str = Field(..., alias="commandId", min_length=1)
    success: bool
    ticket_id: str | int | None = Field(None, alias="ticketId")
    error_text: str | None = Field(None, alias="errorText")
    profit: float | None = None
    new_balance: float | None = Field(None, alias="newBalance")


class ExecutionReportResponse(BaseModel):
    status: Literal["ok"] = "ok"
    applied: bool


# ==============================================================================
# Signal Intake
# ==============================================================================


class SignalIntakeResponse(BaseModel):
    """Response to ``POST /api/v1/signals``."""

    accepted: bool
    signal_id: str | None = None
    quality_score: int
    threshold: int
    breakdown: ScoreBreakdown
    distribution: DistributionResult | None = None


class CycleResponse(BaseModel):
    requested: int
    received: int
    filtered: int
    below_threshold: int
    distributed: int
    commands_created: int
    errors: list[str]
    started_at: datetime
    finished_at: datetime | None = None


# ==============================================================================
# Operator Endpoints
# ==============================================================================


class AccountUpdate(BaseModel):
    """Body of ``PATCH /api/v1/accounts/{account_id}``."""

    active: bool | None = None
    risk_profile: Literal["conservative", "aggressive"] | None = None
    balance: float | None = Field(None, gt=0)


class AccountResponse(BaseModel):
    id: str
    active: bool
    risk_profile: str
    balance: float | None = None
    last_seen: datetime | None = None


class RollDayResponse(BaseModel):
    account_id: str
    date: str
    archived: bool
    new_balance: float | None = None


class StaleCommandResponse(BaseModel):
    command_id: str
    account_id: str
    picked_up_at: datetime | None
    message: str


class StaleCommandsResponse(BaseModel):
    older_than_minutes: int
    count: int
    commands: list[StaleCommandResponse]


class DailyLimitsResponse(BaseModel):
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


# ==============================================================================
# Health
# ==============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "degraded", "unhealthy"]
    service: str
    version: str
    store_connected: bool
    scheduler_running: bool
    timestamp: datetime
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: str
    detail: str
    timestamp: datetime
