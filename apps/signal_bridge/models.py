"""
Command queue records and dispatcher results.

A command is one account's instruction derived from one signal. Its id is a
hash of ``(account_id, signal_id)`` so the pair can never hold two commands.

State Machine:
    PENDING → PROCESSING (claimed by a poll)
    PROCESSING → COMPLETED (execution report, success)
    PROCESSING → FAILED (execution report, failure)
    COMPLETED / FAILED: terminal, no transition back to PENDING

The report that moves a command out of PROCESSING also stores its trade
result with ``result_recorded=False``; the flag turns True once the account
and daily stats carry that result. A repeated report finishes the job when
the flag is still False.
"""

import hashlib
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from libs.signal_quality import Direction


class CommandStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CommandStatus.COMPLETED, CommandStatus.FAILED)


class TradeInstruction(BaseModel):
    """Order the EA opens. ``cmd`` follows the MT4/MT5 convention: 0 buy, 1 sell."""

    symbol: str
    cmd: int = Field(..., ge=0, le=1)
    volume: float = Field(..., gt=0)
    sl: float
    tp: float | None = None

    @staticmethod
    def order_type(direction: Direction) -> int:
        return 0 if direction == Direction.BUY else 1


class Command(BaseModel):
    """Per-account command document in the ``commands`` collection."""

    id: str
    account_id: str
    signal_id: str
    instruction: str = "OPEN_TRADE"
    payload: TradeInstruction
    status: CommandStatus = CommandStatus.PENDING
    created_at: datetime
    picked_up_at: datetime | None = None
    executed_at: datetime | None = None
    ticket: str | None = None
    error: str | None = None
    profit: float | None = None
    new_balance: float | None = None
    report_day: str | None = None
    result_recorded: bool | None = None

    @staticmethod
    def make_id(account_id: str, signal_id: str) -> str:
        digest = hashlib.sha1(f"{account_id}:{signal_id}".encode()).hexdigest()
        return f"cmd_{digest[:24]}"


class ExecutionOutcome(BaseModel):
    """What the EA reports after attempting a command."""

    success: bool
    ticket: str | None = None
    error: str | None = None
    profit: float | None = None
    new_balance: float | None = None


class SkippedAccount(BaseModel):
    account_id: str
    reason: str


class DistributionResult(BaseModel):
    """Outcome of fanning one signal out to accounts."""

    signal_id: str
    distributed_count: int = 0
    command_ids: list[str] = Field(default_factory=list)
    skipped: list[SkippedAccount] = Field(default_factory=list)


class ReportResult(BaseModel):
    """
    Outcome of an execution report.

    ``applied`` is False when the command was not in ``processing`` (already
    terminal, never claimed or owned by another account); ``command`` is then
    the stored command, or None if it does not exist. A repeated report may
    still finish recording the stored trade result.
    """

    applied: bool
    command: Command | None = None
