"""Shared fixtures for signal_bridge tests.

Every test gets its own fakeredis-backed store and a fixed clock; components
are wired the same way build_context wires them in production.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from fakeredis.aioredis import FakeRedis

from apps.signal_bridge.dispatcher import CommandDispatcher
from libs.document_store import BRIDGE_COLLECTIONS, RedisDocumentStore
from libs.risk_management import DailyRiskTracker, RiskConfig, RiskSizer
from libs.signal_quality import (
    Confluence,
    Direction,
    MarketContext,
    OscillatorReading,
    Signal,
    TakeProfit,
)

NOW = datetime(2026, 3, 2, 14, 30, tzinfo=UTC)


class Clock:
    """Mutable clock so tests can move time forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def store() -> RedisDocumentStore:
    return RedisDocumentStore(
        FakeRedis(decode_responses=True), collections=BRIDGE_COLLECTIONS, namespace="test"
    )


@pytest.fixture()
def risk_config() -> RiskConfig:
    return RiskConfig()


@pytest.fixture()
def tracker(store, risk_config, clock) -> DailyRiskTracker:
    return DailyRiskTracker(store, risk_config, clock=clock)


@pytest.fixture()
def dispatcher(store, risk_config, tracker, clock) -> CommandDispatcher:
    return CommandDispatcher(store, RiskSizer(risk_config), tracker, clock=clock)


async def _add_account(
    store,
    account_id: str = "acc-1",
    balance: float | None = 1000.0,
    risk_profile: str = "conservative",
    active: bool = True,
) -> None:
    await store.insert(
        "accounts",
        {
            "token": f"tok-{account_id}",
            "balance": balance,
            "risk_profile": risk_profile,
            "active": active,
        },
        doc_id=account_id,
    )


def _make_signal(**overrides) -> Signal:
    """A SELL signal that scores 75: supply zone, 2:1 reward/risk, RSI 65."""
    values = {
        "direction": Direction.SELL,
        "entry": 2650.0,
        "stop_loss": 2655.0,
        "take_profits": [TakeProfit(level=1, price=2640.0)],
        "confidence": 85,
        "confluence": Confluence(
            oscillator=OscillatorReading(value=65),
            market_context=MarketContext(
                level="SUPPLY_ZONE",
                description="short",
                confluence_score=85,
            ),
        ),
        "timeframe": "5m",
        "tier": "10_50",
    }
    values.update(overrides)
    return Signal(**values)


@pytest.fixture()
def add_account(store):
    """``await add_account("acc-2", balance=5000.0, risk_profile="aggressive")``."""

    async def add(account_id: str = "acc-1", **fields) -> None:
        await _add_account(store, account_id, **fields)

    return add


@pytest.fixture()
def make_signal():
    return _make_signal
