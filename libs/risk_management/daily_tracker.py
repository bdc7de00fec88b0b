"""
Daily profit/loss circuit breaker per account.

Each account gets one :class:`DailyStats` record per UTC day, seeded from the
account balance. Trade results accumulate into it; once today's profit reaches
the target or today's loss reaches the limit the day's status becomes
terminal and no further commands are dispatched to the account until the
next day.

State Machine:
    ACTIVE → ACTIVE (ordinary trade result)
    ACTIVE → PROFIT_HIT (profit_today >= profit_target)
    ACTIVE → LOSS_HIT (loss_today >= max_loss)

    When a single result leaves both thresholds crossed, LOSS_HIT wins: the
    profit check runs first and the loss check overrides it.

Example:
    >>> tracker = DailyRiskTracker(store, RiskConfig())
    >>> await tracker.can_dispatch("acc-1")
    True
    >>> stats = await tracker.apply_trade_result("acc-1", pnl=160.0, new_balance=1160.0)
    >>> stats.status
    <DailyStatus.PROFIT_HIT: 'profit_hit'>

Notes:
    - Records are created explicitly via get_or_create, never as a side effect
      of a read elsewhere
    - Result updates are optimistic read-modify-write on the record, so
      concurrent reports for one account never lose an increment
    - roll_day archives the previous day and carries its ending balance onto
      the account (compounding)
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

from libs.common.exceptions import StoreError
from libs.document_store import ACCOUNTS, DAILY_STATS, DocumentStore
from libs.risk_management.config import RiskConfig
from libs.risk_management.models import (
    DailyLimitsView,
    DailyStats,
    DailyStatus,
    RolloverResult,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def apply_trade(
    stats: DailyStats, pnl: float, new_balance: float | None, now: datetime
) -> DailyStats:
    """
    Fold one closed trade into a day's record.

    A positive pnl counts as a win; zero or negative counts as a loss of
    ``abs(pnl)``. Status is only re-evaluated while the day is still active.
    """
    profit_today = stats.profit_today
    loss_today = stats.loss_today
    trades_won = stats.trades_won
    trades_lost = stats.trades_lost

    if pnl > 0:
        profit_today += pnl
        trades_won += 1
    else:
        loss_today += abs(pnl)
        trades_lost += 1

    status = stats.status
    if status == DailyStatus.ACTIVE:
        if profit_today >= stats.profit_target:
            status = DailyStatus.PROFIT_HIT
        if loss_today >= stats.max_loss:
            status = DailyStatus.LOSS_HIT

    return stats.model_copy(
        update={
            "profit_today": profit_today,
            "loss_today": loss_today,
            "trades_won": trades_won,
            "trades_lost": trades_lost,
            "trades_executed": stats.trades_executed + 1,
            "current_balance": new_balance if new_balance is not None else stats.current_balance,
            "status": status,
            "last_updated": now,
        }
    )


class DailyRiskTracker:
    """
    Per-account daily limits backed by the document store.

    Args:
        store: Document store holding ``accounts`` and ``daily_stats``
        config: Daily limit percentages and default balance
        clock: Returns the current time (timezone-aware, UTC)
    """

    def __init__(
        self,
        store: DocumentStore,
        config: RiskConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.config = config or RiskConfig()
        self._clock = clock

    def today(self) -> str:
        return self._clock().astimezone(UTC).date().isoformat()

    async def _seed_balance(self, account_id: str) -> float:
        document = await self.store.get(ACCOUNTS.name, account_id)
        if document is not None:
            balance = document.get("balance")
            if isinstance(balance, int | float) and balance > 0:
                return float(balance)
        return self.config.default_balance

    async def get_or_create(self, account_id: str, day: str | None = None) -> DailyStats:
        """Return the account's record for ``day`` (default today), creating it if absent."""
        day = day or self.today()
        doc_id = DailyStats.make_id(account_id, day)

        existing = await self.store.get(DAILY_STATS.name, doc_id)
        if existing is not None:
            return DailyStats.model_validate(existing)

        balance = await self._seed_balance(account_id)
        limits = self.config.daily_limits
        now = self._clock()
        seed = DailyStats(
            id=doc_id,
            account_id=account_id,
            date=day,
            start_balance=balance,
            current_balance=balance,
            profit_target=balance * limits.profit_target_pct,
            max_loss=balance * limits.max_loss_pct,
            created_at=now,
            last_updated=now,
        )
        stored = await self.store.create_if_absent(
            DAILY_STATS.name, doc_id, seed.model_dump(mode="json")
        )
        logger.info(
            f"Daily stats ready for {account_id} on {day}",
            extra={"account_id": account_id, "start_balance": stored["start_balance"]},
        )
        return DailyStats.model_validate(stored)

    async def apply_trade_result(
        self,
        account_id: str,
        pnl: float,
        new_balance: float | None = None,
        command_id: str | None = None,
        day: str | None = None,
    ) -> DailyStats:
        """
        Record one closed trade against a day's limits.

        Args:
            account_id: Account that closed the trade
            pnl: Realised profit (positive) or loss (zero/negative)
            new_balance: Balance after the trade; current balance kept when None
            command_id: Command the trade came from; a result already
                recorded for it is not counted again
            day: UTC day to record against (default today)

        Returns:
            The day's record after the update

        Raises:
            StoreError: If the record cannot be read or written
        """
        stats = await self.get_or_create(account_id, day)
        now = self._clock()

        def fold(document: dict) -> dict | None:
            current = DailyStats.model_validate(document)
            if command_id is not None and command_id in current.recorded_commands:
                return None
            folded = apply_trade(current, pnl, new_balance, now)
            if command_id is not None:
                folded.recorded_commands = [*current.recorded_commands, command_id]
            return folded.model_dump(mode="json")

        updated = await self.store.modify(DAILY_STATS.name, stats.id, fold)
        if updated is None:
            raise StoreError(f"Daily stats {stats.id} disappeared during update")

        result = DailyStats.model_validate(updated)
        if result.status == DailyStatus.PROFIT_HIT and stats.status == DailyStatus.ACTIVE:
            logger.info(
                f"Profit target hit for {account_id}: {result.profit_today:.2f}",
                extra={"account_id": account_id, "profit_target": result.profit_target},
            )
        elif result.status == DailyStatus.LOSS_HIT and stats.status == DailyStatus.ACTIVE:
            logger.warning(
                f"Max daily loss hit for {account_id}: {result.loss_today:.2f}",
                extra={"account_id": account_id, "max_loss": result.max_loss},
            )
        return result

    async def can_dispatch(self, account_id: str) -> bool:
        """True while today's status is active."""
        return (await self.get_or_create(account_id)).can_trade

    async def limits(self, account_id: str) -> DailyLimitsView:
        stats = await self.get_or_create(account_id)
        return DailyLimitsView(
            account_id=account_id,
            date=stats.date,
            can_trade=stats.can_trade,
            status=stats.status,
            profit_today=stats.profit_today,
            loss_today=stats.loss_today,
            profit_target=stats.profit_target,
            max_loss=stats.max_loss,
            remaining_profit=max(0.0, stats.profit_target - stats.profit_today),
            remaining_loss=max(0.0, stats.max_loss - stats.loss_today),
            current_balance=stats.current_balance,
            trades_executed=stats.trades_executed,
        )

    async def roll_day(self, account_id: str, today: str | None = None) -> RolloverResult:
        """
        Archive the previous day's record and compound its balance.

        Sets the account balance to the previous day's ending balance and marks
        that record archived, in one batch. Does not create today's record.
        Rolling the same day twice is a no-op.
        """
        current_day = date.fromisoformat(today or self.today())
        previous = (current_day - timedelta(days=1)).isoformat()
        doc_id = DailyStats.make_id(account_id, previous)

        document = await self.store.get(DAILY_STATS.name, doc_id)
        if document is None:
            return RolloverResult(account_id=account_id, date=previous, archived=False)

        stats = DailyStats.model_validate(document)
        if stats.archived:
            return RolloverResult(
                account_id=account_id,
                date=previous,
                archived=False,
                new_balance=stats.current_balance,
            )

        now = self._clock()
        batch = self.store.batch()
        batch.update(
            DAILY_STATS.name,
            doc_id,
            {"archived": True, "last_updated": now.isoformat()},
            expected={"archived": False},
        )
        batch.update(
            ACCOUNTS.name,
            account_id,
            {"balance": stats.current_balance, "last_balance_update": now.isoformat()},
        )
        await self.store.commit(batch)

        logger.info(
            f"Rolled daily stats for {account_id}. New balance: {stats.current_balance}",
            extra={"account_id": account_id, "date": previous},
        )
        return RolloverResult(
            account_id=account_id,
            date=previous,
            archived=True,
            new_balance=stats.current_balance,
        )

    async def roll_all_accounts(self, today: str | None = None) -> list[RolloverResult]:
        """Roll every account; one account's failure does not stop the rest."""
        accounts = await self.store.query(ACCOUNTS.name)
        results: list[RolloverResult] = []
        for document in accounts:
            account_id = document["id"]
            try:
                results.append(await self.roll_day(account_id, today=today))
            except StoreError as e:
                logger.error(
                    f"Daily rollover failed for {account_id}: {e}",
                    extra={"account_id": account_id},
                )
        archived = sum(1 for r in results if r.archived)
        logger.info(f"Daily rollover complete: {archived}/{len(accounts)} accounts archived")
        return results
