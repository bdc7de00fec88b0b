"""
Command dispatcher: signal fan-out and the EA command queue.

Responsibilities:
    - distribute: persist a signal and create one sized command per eligible
      account, all in one atomic batch
    - poll: hand an account its oldest pending command, claimed by
      compare-and-swap so two concurrent polls never get the same command
    - report: move a processing command to completed/failed exactly once and
      feed the trade result into the daily tracker
    - stale_commands: list processing commands nobody reported on

Example:
    >>> dispatcher = CommandDispatcher(store, RiskSizer(config), DailyRiskTracker(store, config))
    >>> result = await dispatcher.distribute(signal)
    >>> result.distributed_count
    3
    >>> command = await dispatcher.poll("acc-1")
    >>> await dispatcher.report("acc-1", command.id, ExecutionOutcome(success=True, ticket="881"))

Notes:
    - Nothing is cached; every decision re-reads the store
    - A stale processing command is never reissued or failed automatically;
      the EA may have opened the trade before it went quiet
"""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from apps.signal_bridge import metrics
from apps.signal_bridge.models import (
    Command,
    CommandStatus,
    DistributionResult,
    ExecutionOutcome,
    ReportResult,
    SkippedAccount,
    TradeInstruction,
)
from libs.common.exceptions import StaleCommandError, StoreError
from libs.document_store import ACCOUNTS, COMMANDS, SIGNALS, DocumentStore
from libs.risk_management import DailyRiskTracker, RiskSizer
from libs.signal_quality import Signal

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CommandDispatcher:
    """
    Fans signals out to accounts and runs the pending → processing → terminal queue.

    Args:
        store: Document store holding signals, accounts and commands
        sizer: Position sizer
        tracker: Daily limits; accounts that cannot trade today are skipped
        clock: Returns the current time (timezone-aware, UTC)
    """

    def __init__(
        self,
        store: DocumentStore,
        sizer: RiskSizer,
        tracker: DailyRiskTracker,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.sizer = sizer
        self.tracker = tracker
        self._clock = clock

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    def _instruction(
        self, signal: Signal, account_id: str, balance: float, risk_profile: str | None
    ) -> TradeInstruction:
        pips = self.sizer.stop_distance_pips(signal.entry, signal.stop_loss)
        sizing = self.sizer.size_details(balance, risk_profile, pips)
        logger.debug(
            f"Sized {sizing.lot_size} lots for {account_id}",
            extra={"account_id": account_id, **sizing.model_dump()},
        )
        return TradeInstruction(
            symbol=signal.symbol,
            cmd=TradeInstruction.order_type(signal.direction),
            volume=sizing.lot_size,
            sl=signal.stop_loss,
            tp=signal.first_take_profit,
        )

    async def distribute(self, signal: Signal) -> DistributionResult:
        """
        Persist ``signal`` and create one command per eligible active account.

        An account is skipped when today's daily limit has been reached or it
        already holds a command for this signal. The signal document and every
        command are committed in one batch: either all exist afterwards or
        none do.

        Raises:
            StoreError: If accounts cannot be read or the batch is rejected;
                no command for this signal was created
        """
        now = self._clock()
        signal_id = signal.id or f"sig_{uuid.uuid4().hex}"
        stored_signal = signal.model_copy(
            update={"id": signal_id, "created_at": signal.created_at or now}
        )
        result = DistributionResult(signal_id=signal_id)

        accounts = await self.store.query(ACCOUNTS.name, {"active": True})
        default_balance = self.tracker.config.default_balance

        batch = self.store.batch()
        batch.set(SIGNALS.name, signal_id, stored_signal.model_dump(mode="json"))

        for account in accounts:
            account_id = account["id"]

            if not await self.tracker.can_dispatch(account_id):
                result.skipped.append(SkippedAccount(account_id=account_id, reason="daily_limit"))
                metrics.accounts_skipped_total.labels(reason="daily_limit").inc()
                continue

            command_id = Command.make_id(account_id, signal_id)
            if await self.store.get(COMMANDS.name, command_id) is not None:
                result.skipped.append(
                    SkippedAccount(account_id=account_id, reason="already_distributed")
                )
                metrics.accounts_skipped_total.labels(reason="already_distributed").inc()
                continue

            balance = account.get("balance") or default_balance
            command = Command(
                id=command_id,
                account_id=account_id,
                signal_id=signal_id,
                payload=self._instruction(
                    stored_signal, account_id, balance, account.get("risk_profile")
                ),
                created_at=now,
            )
            batch.create(COMMANDS.name, command_id, command.model_dump(mode="json"))
            result.command_ids.append(command_id)

        try:
            await self.store.commit(batch)
        except StoreError as e:
            logger.error(
                f"Distribution of signal {signal_id} failed, no commands created: {e}",
                extra={"signal_id": signal_id, "accounts": len(result.command_ids)},
            )
            raise

        result.distributed_count = len(result.command_ids)
        metrics.signals_distributed_total.inc()
        metrics.commands_created_total.inc(result.distributed_count)
        logger.info(
            f"Signal {signal_id} distributed to {result.distributed_count} accounts "
            f"({len(result.skipped)} skipped)",
            extra={
                "signal_id": signal_id,
                "direction": signal.direction.value,
                "quality_score": signal.quality_score,
            },
        )
        return result

    # ------------------------------------------------------------------
    # EA queue
    # ------------------------------------------------------------------

    async def poll(self, account_id: str) -> Command | None:
        """
        Claim the account's oldest pending command.

        Each candidate is claimed with a compare-and-swap on ``status ==
        pending``. Losing the race on one candidate moves on to the next, so a
        poll only returns None when nothing pending is left.
        """
        candidates = await self.store.query(
            COMMANDS.name,
            {"account_id": account_id, "status": CommandStatus.PENDING.value},
        )
        for candidate in candidates:
            claimed = await self.store.update_if(
                COMMANDS.name,
                candidate["id"],
                expected={"status": CommandStatus.PENDING.value},
                fields={
                    "status": CommandStatus.PROCESSING.value,
                    "picked_up_at": self._clock().isoformat(),
                },
            )
            if claimed is None:
                logger.debug(f"Command {candidate['id']} claimed concurrently, trying next")
                continue

            metrics.commands_claimed_total.inc()
            logger.info(
                f"Command {claimed['id']} picked up by {account_id}",
                extra={"account_id": account_id, "command_id": claimed["id"]},
            )
            return Command.model_validate(claimed)
        return None

    async def report(
        self, account_id: str, command_id: str, outcome: ExecutionOutcome
    ) -> ReportResult:
        """
        Record the EA's execution report for a processing command.

        Only the first report for a command applies: the transition out of
        ``processing`` is a compare-and-swap that also stores the reported
        profit and balance with ``result_recorded=False``. The result is then
        written onto the account and, when ``profit`` is set, into the daily
        tracker, and the flag is set. If that step fails the EA gets an error
        and retries; a later report for a terminal command whose result is
        not yet recorded finishes recording the stored result, so a loss
        always reaches the daily limits.

        Raises:
            StoreError: If the store cannot be read or written
        """
        now = self._clock()
        status = CommandStatus.COMPLETED if outcome.success else CommandStatus.FAILED
        fields = {
            "status": status.value,
            "executed_at": now.isoformat(),
            "ticket": outcome.ticket,
            "error": None if outcome.success else (outcome.error or "unknown error"),
            "profit": outcome.profit,
            "new_balance": outcome.new_balance,
            "report_day": self.tracker.today(),
            "result_recorded": False,
        }

        updated = await self.store.update_if(
            COMMANDS.name,
            command_id,
            expected={"status": CommandStatus.PROCESSING.value, "account_id": account_id},
            fields=fields,
        )

        if updated is None:
            return await self._repeated_report(account_id, command_id, now)

        metrics.commands_reported_total.labels(result=status.value).inc()
        logger.info(
            f"Command {command_id} {status.value}",
            extra={
                "account_id": account_id,
                "command_id": command_id,
                "ticket": outcome.ticket,
                "error": outcome.error,
            },
        )
        command = await self._record_result(Command.model_validate(updated), now)
        return ReportResult(applied=True, command=command)

    async def _repeated_report(
        self, account_id: str, command_id: str, now: datetime
    ) -> ReportResult:
        existing = await self.store.get(COMMANDS.name, command_id)
        if existing is None or existing.get("account_id") != account_id:
            await self._touch_account(account_id, now)
            metrics.commands_reported_total.labels(result="ignored").inc()
            logger.warning(
                f"Ignoring report for command {command_id}: not owned by {account_id}",
                extra={"account_id": account_id, "command_id": command_id},
            )
            return ReportResult(applied=False)

        command = Command.model_validate(existing)
        if command.status.is_terminal and command.result_recorded is False:
            logger.warning(
                f"Command {command_id} is {command.status.value} but its result was not "
                "recorded, recording it now",
                extra={"account_id": account_id, "command_id": command_id},
            )
            metrics.commands_reported_total.labels(result="recovered").inc()
            return ReportResult(applied=False, command=await self._record_result(command, now))

        await self._touch_account(account_id, now)
        metrics.commands_reported_total.labels(result="ignored").inc()
        logger.warning(
            f"Ignoring report for command {command_id}: not processing for {account_id}",
            extra={
                "account_id": account_id,
                "command_id": command_id,
                "current_status": command.status.value,
            },
        )
        return ReportResult(applied=False, command=command)

    async def _record_result(self, command: Command, now: datetime) -> Command:
        """Write a terminal command's stored result onto the account and daily stats.

        Safe to repeat: the tracker skips a command it has already counted.
        """
        await self._touch_account(command.account_id, now, command.new_balance)
        if command.profit is not None:
            await self.tracker.apply_trade_result(
                command.account_id,
                command.profit,
                command.new_balance,
                command_id=command.id,
                day=command.report_day,
            )
        await self.store.update_if(
            COMMANDS.name,
            command.id,
            expected={"result_recorded": False},
            fields={"result_recorded": True},
        )
        return command.model_copy(update={"result_recorded": True})

    async def _touch_account(
        self, account_id: str, now: datetime, new_balance: float | None = None
    ) -> None:
        fields: dict[str, object] = {"last_seen": now.isoformat()}
        if new_balance is not None and new_balance > 0:
            fields["balance"] = new_balance
            fields["last_balance_update"] = now.isoformat()
        if await self.store.update(ACCOUNTS.name, account_id, fields) is None:
            logger.warning(f"Report from unknown account {account_id}")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def stale_commands(self, older_than: timedelta) -> list[StaleCommandError]:
        """
        List processing commands claimed more than ``older_than`` ago.

        Nothing is changed; each returned condition is for an operator to
        reconcile against the broker.
        """
        cutoff = self._clock() - older_than
        processing = await self.store.query(
            COMMANDS.name, {"status": CommandStatus.PROCESSING.value}
        )

        stale: list[StaleCommandError] = []
        for document in processing:
            command = Command.model_validate(document)
            if command.picked_up_at is None or command.picked_up_at < cutoff:
                condition = StaleCommandError(command.id, command.account_id, command.picked_up_at)
                logger.warning(
                    str(condition),
                    extra={"command_id": command.id, "account_id": command.account_id},
                )
                stale.append(condition)

        metrics.stale_commands.set(len(stale))
        return stale
