"""
Signal model, normalisation of generator output, and quality scoring.

Provides:
- Signal and its confluence sub-models
- normalize_upstream / parse_signal: payload -> Signal
- QualityScorer: weighted 0-100 score and the distribution gate
"""

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
from libs.signal_quality.normalizer import normalize_upstream, parse_signal
from libs.signal_quality.scorer import QualityScorer, ScoreBreakdown

__all__ = [
    "CandlestickRequirement",
    "Confluence",
    "Direction",
    "MarketContext",
    "OscillatorReading",
    "QualityScorer",
    "ScoreBreakdown",
    "Signal",
    "TakeProfit",
    "Validity",
    "WickRejection",
    "normalize_upstream",
    "parse_signal",
]
