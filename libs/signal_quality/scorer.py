"""
Signal quality scoring.

Scores a signal 0-100 from five weighted components and gates distribution on
a threshold (65 by default). Every component tolerates missing data and
degrades to its neutral value instead of raising, so a sparse signal still gets
a deterministic score.

Components:
    - confidence (30%): the generator's own confidence, 0 if absent
    - confluence score (25%): market-context confluence score, 0 if absent
    - risk/reward (20%): reward/risk to the first take-profit, ×20 capped at 100
    - oscillator alignment (15%): RSI position relative to trade direction
    - market context (10%): strength of the level and quality of its description

Example:
    >>> scorer = QualityScorer()
    >>> scorer.score(signal)
    75
    >>> scorer.should_monitor(signal)
    True
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from libs.signal_quality.models import Direction, Signal

logger = logging.getLogger(__name__)

WEIGHTS = {
    "confidence": 0.30,
    "confluence": 0.25,
    "risk_reward": 0.20,
    "oscillator": 0.15,
    "market_context": 0.10,
}

DEFAULT_THRESHOLD = 65
NEUTRAL_SCORE = 50
STRONG_LEVELS = frozenset({"SUPPLY_ZONE", "DEMAND_ZONE", "KEY_SUPPORT", "KEY_RESISTANCE"})
DETAILED_DESCRIPTION_CHARS = 50


class ScoreBreakdown(BaseModel):
    """Every component score plus the weighted, rounded total."""

    confidence: float
    confluence: float
    risk_reward: float
    oscillator: float
    market_context: float
    total: int


def risk_reward_ratio(signal: Signal) -> float:
    """Reward/risk to the first take-profit. 0 when it cannot be computed."""
    target = signal.first_take_profit
    if not target or not signal.entry or not signal.stop_loss:
        return 0.0

    risk = abs(signal.entry - signal.stop_loss)
    if risk == 0:
        return 0.0
    return abs(target - signal.entry) / risk


def oscillator_alignment(signal: Signal) -> float:
    """Score how well the RSI reading supports the trade direction."""
    oscillator = signal.confluence.oscillator
    if oscillator is None or oscillator.value is None:
        return NEUTRAL_SCORE

    value = oscillator.value
    if signal.direction == Direction.SELL:
        if value > 70:
            return 100
        if value > 60:
            return 80
        if value > 50:
            return 60
        return 30

    if value < 30:
        return 100
    if value < 40:
        return 80
    if value < 50:
        return 60
    return 30


def market_context_strength(signal: Signal) -> float:
    context = signal.confluence.market_context
    if context is None:
        return NEUTRAL_SCORE

    score = NEUTRAL_SCORE
    if context.level in STRONG_LEVELS:
        score += 30
    if len(context.description or "") > DETAILED_DESCRIPTION_CHARS:
        score += 20
    return min(score, 100)


def _round_half_up(value: float) -> int:
    # Trim float noise first so 12.4999999 rounds like 12.5.
    return int(Decimal(str(round(value, 6))).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class QualityScorer:
    """
    Weighted quality score and distribution gate.

    Args:
        threshold: Minimum score for a signal to be distributed
    """

    def __init__(self, threshold: int = DEFAULT_THRESHOLD):
        self.threshold = threshold

    def breakdown(self, signal: Signal) -> ScoreBreakdown:
        context = signal.confluence.market_context
        components = {
            "confidence": float(signal.confidence or 0),
            "confluence": float(context.confluence_score or 0) if context else 0.0,
            "risk_reward": min(risk_reward_ratio(signal) * 20, 100.0),
            "oscillator": float(oscillator_alignment(signal)),
            "market_context": float(market_context_strength(signal)),
        }
        weighted = sum(components[name] * weight for name, weight in WEIGHTS.items())
        total = max(0, min(100, _round_half_up(weighted)))
        return ScoreBreakdown(**components, total=total)

    def score(self, signal: Signal) -> int:
        """Return the quality score, an integer in [0, 100]."""
        return self.breakdown(signal).total

    def should_monitor(self, signal: Signal) -> bool:
        """True when the signal scores at or above the threshold."""
        result = self.score(signal)
        if result < self.threshold:
            logger.debug(
                f"Signal below quality threshold: {result} < {self.threshold}",
                extra={"signal_id": signal.id, "quality_score": result},
            )
        return result >= self.threshold
