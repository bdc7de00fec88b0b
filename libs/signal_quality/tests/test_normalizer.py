"""Tests for upstream payload normalisation."""

from datetime import UTC, datetime, timedelta

import pytest

from libs.common.exceptions import ValidationError
from libs.signal_quality.models import Direction
from libs.signal_quality.normalizer import normalize_upstream, parse_direction, parse_signal

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


def upstream_payload(**overrides):
    payload = {
        "signal": "STRONG_SELL",
        "confidence": 82,
        "entry": 2650.5,
        "stopLoss": 2655.5,
        "takeProfit1": 2645.5,
        "takeProfit2": 2640.5,
        "technicalAnalysis": "RSI: 74 and overbought on the 15 minute chart",
    }
    payload.update(overrides)
    return payload


class TestParseDirection:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("BUY", Direction.BUY), ("STRONG_SELL", Direction.SELL), (" strong_buy ", Direction.BUY)],
    )
    def test_known_values(self, raw, expected):
        assert parse_direction(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "HOLD", 1])
    def test_rejects_unknown(self, raw):
        with pytest.raises(ValidationError):
            parse_direction(raw)


class TestNormalizeUpstream:
    def test_sell_payload(self):
        signal = normalize_upstream(upstream_payload(), timeframe="15m", tier="10_50", now=NOW)

        assert signal.direction == Direction.SELL
        assert signal.symbol == "XAUUSD"
        assert signal.entry == 2650.5
        assert signal.stop_loss == 2655.5
        assert [(tp.level, tp.price, tp.percentage) for tp in signal.take_profits] == [
            (1, 2645.5, 50),
            (2, 2640.5, 50),
        ]
        assert signal.timeframe == "15m"
        assert signal.tier == "10_50"
        assert signal.validity.expires_at == NOW + timedelta(hours=2)
        assert signal.validity.max_wait_minutes == 120

    def test_sell_confluence(self):
        confluence = normalize_upstream(upstream_payload(), timeframe="15m", now=NOW).confluence

        assert confluence.oscillator.value == 74
        assert confluence.oscillator.condition == "ABOVE_70_OVERBOUGHT"
        assert confluence.candlestick.pattern == "SHOOTING_STAR_OR_ENGULFING"
        assert confluence.wick_rejection.side == "UPPER_WICK"
        assert confluence.wick_rejection.min_size == 15
        assert confluence.market_context.level == "SUPPLY_ZONE"
        assert confluence.market_context.level_price == 2650.5
        assert confluence.market_context.confluence_score == 82

    def test_buy_defaults_without_analysis(self):
        payload = upstream_payload(
            signal="BUY", stopLoss=2645.5, takeProfit1=2655.5, takeProfit2=None,
            technicalAnalysis=None,
        )

        signal = normalize_upstream(payload, timeframe="5m", now=NOW)
        confluence = signal.confluence

        assert confluence.oscillator.value == 50
        assert confluence.oscillator.condition == "BELOW_40_TURNING_UP"
        assert confluence.candlestick.pattern == "HAMMER_OR_BULLISH_ENGULFING"
        assert confluence.wick_rejection.side == "LOWER_WICK"
        assert confluence.wick_rejection.min_size == 10
        assert confluence.market_context.level == "DEMAND_ZONE"
        assert confluence.market_context.description == "Key level identified by AI"
        assert len(signal.take_profits) == 1

    def test_level_explanation_preferred_for_description(self):
        payload = upstream_payload(levelExplanation="Daily supply", marketContext="Range top")

        signal = normalize_upstream(payload, now=NOW)

        assert signal.confluence.market_context.description == "Daily supply"

    def test_oversold_condition(self):
        payload = upstream_payload(signal="BUY", stopLoss=2640, technicalAnalysis="rsi 22 oversold")

        oscillator = normalize_upstream(payload, now=NOW).confluence.oscillator

        assert oscillator.value == 22
        assert oscillator.condition == "BELOW_30_OVERSOLD"

    @pytest.mark.parametrize("missing", ["signal", "entry", "stopLoss"])
    def test_missing_required_field(self, missing):
        payload = upstream_payload()
        payload.pop(missing)

        with pytest.raises(ValidationError):
            normalize_upstream(payload, now=NOW)

    def test_non_numeric_price(self):
        with pytest.raises(ValidationError, match="non-numeric"):
            normalize_upstream(upstream_payload(entry="abc"), now=NOW)

    def test_out_of_range_confidence(self):
        with pytest.raises(ValidationError):
            normalize_upstream(upstream_payload(confidence=140), now=NOW)


class TestParseSignal:
    def test_full_signal_document(self):
        signal = parse_signal(
            {
                "direction": "BUY",
                "entry": 2000,
                "stop_loss": 1995,
                "take_profits": [{"level": 1, "price": 2010}],
                "confidence": 90,
            }
        )

        assert signal.direction == Direction.BUY
        assert signal.first_take_profit == 2010

    def test_upstream_shape(self):
        signal = parse_signal(upstream_payload(timeframe="5m", tier="200_500"))

        assert signal.timeframe == "5m"
        assert signal.tier == "200_500"

    def test_invalid_full_signal(self):
        with pytest.raises(ValidationError, match="stop_loss"):
            parse_signal({"direction": "BUY", "entry": 2000})

    def test_unrecognised_payload(self):
        with pytest.raises(ValidationError):
            parse_signal({"foo": "bar"})
