"""
Tests for DailyRiskTracker.

Uses a fakeredis-backed document store and a fixed clock. Covers:
    - lazy creation seeded from the account balance (or the default balance)
    - profit/loss accumulation and terminal statuses
    - loss precedence when both thresholds are crossed in one update
    - concurrent results not losing increments
    - rollover compounding and idempotency
"""

import asyncio
from datetime import UTC, datetime

import pytest
from fakeredis.aioredis import FakeRedis

from libs.document_store import BRIDGE_COLLECTIONS, RedisDocumentStore
from libs.risk_management.config import DailyLimits, RiskConfig
from libs.risk_management.daily_tracker import DailyRiskTracker, apply_trade
from libs.risk_management.models import DailyStats, DailyStatus

NOW = datetime(2026, 3, 2, 14, 30, tzinfo=UTC)


@pytest.fixture()
def store():
    return RedisDocumentStore(FakeRedis(decode_responses=True), collections=BRIDGE_COLLECTIONS)


@pytest.fixture()
def tracker(store):
    return DailyRiskTracker(store, RiskConfig(), clock=lambda: NOW)


async def add_account(store, account_id="acc-1", balance=1000.0):
    await store.insert(
        "accounts",
        {"token": f"tok-{account_id}", "balance": balance, "risk_profile": "conservative",
         "active": True},
        doc_id=account_id,
    )


class TestGetOrCreate:
    @pytest.mark.asyncio()
    async def test_seeded_from_account_balance(self, store, tracker):
        await add_account(store, balance=2000.0)

        stats = await tracker.get_or_create("acc-1")

        assert stats.id == "acc-1:2026-03-02"
        assert stats.start_balance == 2000.0
        assert stats.profit_target == pytest.approx(300.0)
        assert stats.max_loss == pytest.approx(160.0)
        assert stats.status == DailyStatus.ACTIVE

    @pytest.mark.asyncio()
    async def test_default_balance_without_account_balance(self, store, tracker):
        await add_account(store, balance=None)

        stats = await tracker.get_or_create("acc-1")

        assert stats.start_balance == 1000.0

    @pytest.mark.asyncio()
    async def test_existing_record_is_returned(self, store, tracker):
        await add_account(store)
        first = await tracker.get_or_create("acc-1")
        await store.update("accounts", "acc-1", {"balance": 5000.0})

        second = await tracker.get_or_create("acc-1")

        assert second.start_balance == first.start_balance == 1000.0


class TestTradeResults:
    @pytest.mark.asyncio()
    async def test_win_and_loss_accumulate(self, store, tracker):
        await add_account(store)

        await tracker.apply_trade_result("acc-1", 20.0, 1020.0)
        stats = await tracker.apply_trade_result("acc-1", -15.0, 1005.0)

        assert stats.profit_today == pytest.approx(20.0)
        assert stats.loss_today == pytest.approx(15.0)
        assert (stats.trades_executed, stats.trades_won, stats.trades_lost) == (2, 1, 1)
        assert stats.current_balance == 1005.0
        assert stats.status == DailyStatus.ACTIVE

    @pytest.mark.asyncio()
    async def test_zero_pnl_counts_as_loss(self, store, tracker):
        await add_account(store)

        stats = await tracker.apply_trade_result("acc-1", 0.0)

        assert stats.trades_lost == 1
        assert stats.current_balance == 1000.0

    @pytest.mark.asyncio()
    async def test_profit_hit_is_sticky(self, store, tracker):
        await add_account(store)

        hit = await tracker.apply_trade_result("acc-1", 160.0, 1160.0)
        after_loss = await tracker.apply_trade_result("acc-1", -200.0, 960.0)

        assert hit.status == DailyStatus.PROFIT_HIT
        assert after_loss.status == DailyStatus.PROFIT_HIT
        assert await tracker.can_dispatch("acc-1") is False

    @pytest.mark.asyncio()
    async def test_loss_hit_blocks_dispatch(self, store, tracker):
        await add_account(store)

        stats = await tracker.apply_trade_result("acc-1", -80.0, 920.0)

        assert stats.status == DailyStatus.LOSS_HIT
        assert await tracker.can_dispatch("acc-1") is False

    @pytest.mark.asyncio()
    async def test_concurrent_results_keep_every_trade(self, store, tracker):
        await add_account(store, balance=100_000.0)

        await asyncio.gather(*(tracker.apply_trade_result("acc-1", 1.0) for _ in range(8)))

        stats = await tracker.get_or_create("acc-1")
        assert stats.trades_executed == 8
        assert stats.profit_today == pytest.approx(8.0)

    @pytest.mark.asyncio()
    async def test_same_command_is_counted_once(self, store, tracker):
        await add_account(store)

        await tracker.apply_trade_result("acc-1", -30.0, 970.0, command_id="cmd_a")
        stats = await tracker.apply_trade_result("acc-1", -30.0, 970.0, command_id="cmd_a")

        assert stats.trades_executed == 1
        assert stats.loss_today == pytest.approx(30.0)
        assert stats.recorded_commands == ["cmd_a"]

    @pytest.mark.asyncio()
    async def test_result_for_explicit_day(self, store, tracker):
        await add_account(store)

        await tracker.apply_trade_result("acc-1", 10.0, day="2026-03-01")

        assert (await tracker.get_or_create("acc-1", "2026-03-01")).trades_won == 1
        assert (await tracker.get_or_create("acc-1")).trades_executed == 0


class TestApplyTrade:
    def _stats(self, **overrides):
        values = {
            "id": "a:2026-03-02",
            "account_id": "a",
            "date": "2026-03-02",
            "start_balance": 1000.0,
            "current_balance": 1000.0,
            "profit_target": 150.0,
            "max_loss": 80.0,
            "created_at": NOW,
            "last_updated": NOW,
        }
        values.update(overrides)
        return DailyStats(**values)

    def test_loss_takes_precedence_when_both_crossed(self):
        stats = self._stats(profit_today=200.0, loss_today=70.0)

        result = apply_trade(stats, -20.0, None, NOW)

        assert result.status == DailyStatus.LOSS_HIT

    def test_terminal_status_not_reevaluated(self):
        stats = self._stats(status=DailyStatus.LOSS_HIT, loss_today=100.0)

        result = apply_trade(stats, 500.0, None, NOW)

        assert result.status == DailyStatus.LOSS_HIT
        assert result.profit_today == 500.0


class TestLimits:
    @pytest.mark.asyncio()
    async def test_limits_view(self, store, tracker):
        await add_account(store)
        await tracker.apply_trade_result("acc-1", 50.0, 1050.0)

        view = await tracker.limits("acc-1")

        assert view.can_trade is True
        assert view.remaining_profit == pytest.approx(100.0)
        assert view.remaining_loss == pytest.approx(80.0)

    @pytest.mark.asyncio()
    async def test_custom_limits(self, store):
        config = RiskConfig(daily_limits=DailyLimits(profit_target_pct=0.05, max_loss_pct=0.02))
        tracker = DailyRiskTracker(store, config, clock=lambda: NOW)
        await add_account(store)

        view = await tracker.limits("acc-1")

        assert view.profit_target == pytest.approx(50.0)
        assert view.max_loss == pytest.approx(20.0)


class TestRollover:
    @pytest.mark.asyncio()
    async def test_roll_day_compounds_balance(self, store, tracker):
        await add_account(store)
        await tracker.apply_trade_result("acc-1", 60.0, 1060.0)

        result = await tracker.roll_day("acc-1", today="2026-03-03")

        assert result.archived is True
        assert result.new_balance == 1060.0
        assert (await store.get("accounts", "acc-1"))["balance"] == 1060.0
        assert (await store.get("daily_stats", "acc-1:2026-03-02"))["archived"] is True
        assert await store.get("daily_stats", "acc-1:2026-03-03") is None

    @pytest.mark.asyncio()
    async def test_roll_day_twice_is_noop(self, store, tracker):
        await add_account(store)
        await tracker.get_or_create("acc-1")

        await tracker.roll_day("acc-1", today="2026-03-03")
        again = await tracker.roll_day("acc-1", today="2026-03-03")

        assert again.archived is False

    @pytest.mark.asyncio()
    async def test_roll_day_without_previous_record(self, store, tracker):
        await add_account(store)

        result = await tracker.roll_day("acc-1", today="2026-03-03")

        assert result.archived is False
        assert (await store.get("accounts", "acc-1"))["balance"] == 1000.0

    @pytest.mark.asyncio()
    async def test_new_day_starts_from_compounded_balance(self, store):
        await add_account(store)
        day_one = DailyRiskTracker(store, RiskConfig(), clock=lambda: NOW)
        await day_one.apply_trade_result("acc-1", -80.0, 920.0)
        assert await day_one.can_dispatch("acc-1") is False

        day_two = DailyRiskTracker(
            store, RiskConfig(), clock=lambda: datetime(2026, 3, 3, 0, 5, tzinfo=UTC)
        )
        await day_two.roll_all_accounts()

        stats = await day_two.get_or_create("acc-1")
        assert stats.start_balance == 920.0
        assert stats.status == DailyStatus.ACTIVE
        assert await day_two.can_dispatch("acc-1") is True

    @pytest.mark.asyncio()
    async def test_roll_all_accounts(self, store, tracker):
        await add_account(store, "acc-1")
        await add_account(store, "acc-2")
        await tracker.get_or_create("acc-1")

        results = await tracker.roll_all_accounts(today="2026-03-03")

        assert {r.account_id: r.archived for r in results} == {"acc-1": True, "acc-2": False}
