"""
Signal data model.

A signal is created by the upstream generator (or posted directly), scored,
then persisted once with a server-assigned id and creation timestamp. It is
not modified afterwards, so the model is frozen; ``model_copy(update=...)``
produces the persisted variant.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Direction(str, Enum):
    """Trade direction."""

    BUY = "BUY"
    SELL = "SELL"


# ==============================================================================
# Confluence
# ==============================================================================


class OscillatorReading(BaseModel):
    """Momentum oscillator (RSI) state at signal time."""

    model_config = ConfigDict(frozen=True)

    period: int = 14
    value: float | None = None
    condition: str | None = None
    description: str = ""


class CandlestickRequirement(BaseModel):
    """Reversal candle the EA should wait for at the entry zone."""

    model_config = ConfigDict(frozen=True)

    pattern: str
    description: str = ""


class WickRejection(BaseModel):
    """Wick rejection the EA should see before entering."""

    model_config = ConfigDict(frozen=True)

    required: bool = True
    side: str
    min_size: float
    description: str = ""


class MarketContext(BaseModel):
    """Market-structure level the entry sits on."""

    model_config = ConfigDict(frozen=True)

    level: str | None = None
    level_price: float | None = None
    description: str = ""
    confluence_score: float | None = Field(None, ge=0, le=100)


class Confluence(BaseModel):
    """Corroborating technical conditions attached to a signal."""

    model_config = ConfigDict(frozen=True)

    oscillator: OscillatorReading | None = None
    candlestick: CandlestickRequirement | None = None
    wick_rejection: WickRejection | None = None
    market_context: MarketContext | None = None


# ==============================================================================
# Signal
# ==============================================================================


class TakeProfit(BaseModel):
    """One take-profit level and the share of the position closed there."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1)
    price: float = Field(..., gt=0)
    percentage: float = Field(50.0, gt=0, le=100)


class Validity(BaseModel):
    """How long the signal stays actionable."""

    model_config = ConfigDict(frozen=True)

    expires_at: datetime | None = None
    max_wait_minutes: int = 120


class Signal(BaseModel):
    """Trading signal distributed to every eligible account."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    symbol: str = "XAUUSD"
    direction: Direction
    entry: float = Field(..., gt=0, description="Entry price")
    stop_loss: float = Field(..., gt=0, description="Stop-loss price")
    take_profits: list[TakeProfit] = Field(default_factory=list)
    confidence: float = Field(0, ge=0, le=100)
    confluence: Confluence = Field(default_factory=Confluence)
    timeframe: str | None = None
    tier: str | None = None
    validity: Validity = Field(default_factory=Validity)
    quality_score: int | None = None
    created_at: datetime | None = None

    @property
    def first_take_profit(self) -> float | None:
        return self.take_profits[0].price if self.take_profits else None

    @property
    def stop_distance(self) -> float:
        """Absolute price distance between entry and stop."""
        return abs(self.entry - self.stop_loss)
