"""
Conversion of upstream generator payloads into :class:`Signal`.

The generator answers with a flat payload::

    {
        "signal": "STRONG_SELL",
        "confidence": 82,
        "entry": 2650.5,
        "stopLoss": 2655.5,
        "takeProfit1": 2645.5,
        "takeProfit2": 2640.5,
        "technicalAnalysis": "RSI: 74 overbought on M15 ...",
        "levelExplanation": "...",     # optional
        "marketContext": "...",        # optional
        "symbol": "XAUUSD"             # optional
    }

which is expanded into a signal with confluence metadata the EA uses for its
entry filters: RSI reading parsed from the analysis text, the reversal candle
and wick rejection to wait for, and the supply/demand zone the entry sits on.
"""

import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pydantic

from libs.common.exceptions import ValidationError
from libs.signal_quality.models import (
    CandlestickRequirement,
    Confluence,
    Direction,
    MarketContext,
    OscillatorReading,
    Signal,
    TakeProfit,
    Validity,
    WickRejection,
)

DEFAULT_SYMBOL = "XAUUSD"
DEFAULT_OSCILLATOR_VALUE = 50.0
VALIDITY_WINDOW = timedelta(hours=2)
MAX_WAIT_MINUTES = 120

_RSI_PATTERN = re.compile(r"RSI[:\s]+(\d+)", re.IGNORECASE)


def parse_direction(raw: Any) -> Direction:
    """Map ``BUY``/``SELL``/``STRONG_BUY``/``STRONG_SELL`` to a direction.

    Raises:
        ValidationError: For anything else, including missing values
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Upstream payload missing signal direction")

    value = raw.strip().upper().replace("STRONG_", "")
    try:
        return Direction(value)
    except ValueError as e:
        raise ValidationError(f"Unsupported signal direction: {raw!r}") from e


def _optional_price(payload: Mapping[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Upstream payload has non-numeric {key}: {value!r}") from e
    if price <= 0:
        raise ValidationError(f"Upstream payload has non-positive {key}: {price}")
    return price


def _price(payload: Mapping[str, Any], key: str) -> float:
    price = _optional_price(payload, key)
    if price is None:
        raise ValidationError(f"Upstream payload missing {key}")
    return price


def extract_oscillator(direction: Direction, analysis: str | None) -> OscillatorReading:
    """Parse the RSI value and condition out of free-form analysis text."""
    value = DEFAULT_OSCILLATOR_VALUE
    condition = "ABOVE_60_TURNING_DOWN" if direction == Direction.SELL else "BELOW_40_TURNING_UP"

    if analysis:
        match = _RSI_PATTERN.search(analysis)
        if match:
            value = float(match.group(1))

        lowered = analysis.lower()
        if "overbought" in lowered:
            condition = "ABOVE_70_OVERBOUGHT"
        elif "oversold" in lowered:
            condition = "BELOW_30_OVERSOLD"

    return OscillatorReading(
        period=14,
        value=value,
        condition=condition,
        description=analysis or "AI analysis provided",
    )


def build_confluence(
    payload: Mapping[str, Any], direction: Direction, timeframe: str | None, entry: float
) -> Confluence:
    analysis = payload.get("technicalAnalysis")
    is_sell = direction == Direction.SELL

    description = (
        payload.get("levelExplanation")
        or payload.get("marketContext")
        or analysis
        or "Key level identified by AI"
    )
    confidence = payload.get("confidence")

    return Confluence(
        oscillator=extract_oscillator(direction, analysis),
        candlestick=CandlestickRequirement(
            pattern="SHOOTING_STAR_OR_ENGULFING" if is_sell else "HAMMER_OR_BULLISH_ENGULFING",
            description=(
                f"Wait for {'bearish' if is_sell else 'bullish'} reversal candle at entry zone"
            ),
        ),
        wick_rejection=WickRejection(
            required=True,
            side="UPPER_WICK" if is_sell else "LOWER_WICK",
            min_size=10 if timeframe == "5m" else 15,
            description=f"Strong {'upper' if is_sell else 'lower'} wick rejection required",
        ),
        market_context=MarketContext(
            level="SUPPLY_ZONE" if is_sell else "DEMAND_ZONE",
            level_price=entry,
            description=str(description),
            confluence_score=float(confidence) if confidence is not None else None,
        ),
    )


def normalize_upstream(
    payload: Mapping[str, Any],
    timeframe: str | None = None,
    tier: str | None = None,
    now: datetime | None = None,
) -> Signal:
    """
    Build a :class:`Signal` from an upstream generator payload.

    Args:
        payload: Decoded JSON body returned by the generator
        timeframe: Timeframe the signal was requested for
        tier: Balance tier the signal was requested for
        now: Reference time for the validity window (defaults to now, UTC)

    Returns:
        Unscored, unpersisted signal

    Raises:
        ValidationError: If the direction or any required price is missing/invalid
    """
    direction = parse_direction(payload.get("signal"))
    entry = _price(payload, "entry")
    stop_loss = _price(payload, "stopLoss")

    take_profits = []
    for level, key in enumerate(("takeProfit1", "takeProfit2"), start=1):
        price = _optional_price(payload, key)
        if price is not None:
            take_profits.append(TakeProfit(level=level, price=price, percentage=50))

    now = now or datetime.now(UTC)

    try:
        return Signal(
            symbol=payload.get("symbol") or DEFAULT_SYMBOL,
            direction=direction,
            entry=entry,
            stop_loss=stop_loss,
            take_profits=take_profits,
            confidence=float(payload.get("confidence") or 0),
            confluence=build_confluence(payload, direction, timeframe, entry),
            timeframe=timeframe,
            tier=tier,
            validity=Validity(expires_at=now + VALIDITY_WINDOW, max_wait_minutes=MAX_WAIT_MINUTES),
        )
    except pydantic.ValidationError as e:
        raise ValidationError(f"Upstream payload rejected: {e.errors()[0]['msg']}") from e
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Upstream payload rejected: {e}") from e


def parse_signal(payload: Mapping[str, Any]) -> Signal:
    """
    Accept either a full signal document or an upstream-shaped payload.

    Full documents are recognised by a ``direction`` field; anything with a
    ``signal`` field is treated as generator output.

    Raises:
        ValidationError: If the payload matches neither shape or fails validation
    """
    if "direction" in payload:
        try:
            return Signal.model_validate(dict(payload))
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ValidationError(f"Invalid signal field {location}: {first['msg']}") from e

    if "signal" in payload:
        return normalize_upstream(payload, payload.get("timeframe"), payload.get("tier"))

    raise ValidationError("Payload is neither a signal nor an upstream generator response")
