"""
Signal scheduler: the hourly request → score → distribute cycle.

Two APScheduler jobs run on the service's event loop:
    - signal_cycle: every ``interval_minutes`` (and once shortly after
      startup), requests every timeframe/tier from the signal source, drops
      signals below the quality threshold and distributes the rest
    - daily_rollover: 00:00 UTC, archives each account's previous day and
      compounds its ending balance

A cycle never overlaps another: the job has ``max_instances=1`` and the
manual trigger checks an in-flight flag. Every unit of work inside a cycle is
isolated, so one failed request or distribution never aborts the rest.

Example:
    >>> scheduler = SignalScheduler(client, QualityScorer(), dispatcher, tracker,
    ...                             timeframes=["5m", "15m"], tiers=["10_50"])
    >>> scheduler.start()
    >>> report = await scheduler.run_cycle()
    >>> report.distributed
    1
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]
from pydantic import BaseModel, Field

from apps.signal_bridge import metrics
from apps.signal_bridge.clients import RequestSummary, SignalSource
from apps.signal_bridge.dispatcher import CommandDispatcher
from apps.signal_bridge.notifier import (
    BaseNotifier,
    format_no_setup_message,
    format_signal_message,
)
from libs.common.exceptions import SignalBridgeError, StoreError
from libs.common.logging import LogContext
from libs.risk_management import DailyRiskTracker, RolloverResult
from libs.signal_quality import QualityScorer

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "signal_cycle"
ROLLOVER_JOB_ID = "daily_rollover"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CycleReport(BaseModel):
    """Counts for one signal cycle."""

    requested: int = 0
    received: int = 0
    filtered: int = 0
    below_threshold: int = 0
    distributed: int = 0
    commands_created: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False
    started_at: datetime
    finished_at: datetime | None = None


class SignalScheduler:
    """
    Runs signal cycles and the daily rollover.

    Args:
        source: Produces signals per timeframe/tier
        scorer: Quality gate
        dispatcher: Fans qualifying signals out to accounts
        tracker: Daily limits, rolled over at midnight UTC
        timeframes: Timeframes requested each cycle
        tiers: Balance tiers requested for every timeframe
        notifier: Optional broadcast channel for distributed signals
        recipients: Notifier recipients
        interval_minutes: Minutes between cycles
        run_on_startup: Schedule the first cycle ``startup_delay_seconds``
            after start instead of one full interval later
        startup_delay_seconds: See run_on_startup
        clock: Returns the current time (timezone-aware, UTC)
    """

    def __init__(
        self,
        source: SignalSource,
        scorer: QualityScorer,
        dispatcher: CommandDispatcher,
        tracker: DailyRiskTracker,
        timeframes: Sequence[str],
        tiers: Sequence[str],
        notifier: BaseNotifier | None = None,
        recipients: Sequence[str] = (),
        interval_minutes: int = 60,
        run_on_startup: bool = True,
        startup_delay_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.source = source
        self.scorer = scorer
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.timeframes = list(timeframes)
        self.tiers = list(tiers)
        self.notifier = notifier
        self.recipients = list(recipients)
        self.interval_minutes = interval_minutes
        self.run_on_startup = run_on_startup
        self.startup_delay_seconds = startup_delay_seconds
        self._clock = clock
        self._in_flight = False
        self.last_report: CycleReport | None = None
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self) -> None:
        """
        Register both jobs and start the scheduler on the running event loop.

        Must be called from inside the loop (the FastAPI lifespan does this).
        """
        cycle_options: dict[str, Any] = {
            "id": CYCLE_JOB_ID,
            "max_instances": 1,
            "coalesce": True,
            "replace_existing": True,
        }
        if self.run_on_startup:
            cycle_options["next_run_time"] = self._clock() + timedelta(
                seconds=self.startup_delay_seconds
            )
        self.scheduler.add_job(
            self.run_cycle,
            IntervalTrigger(minutes=self.interval_minutes, timezone="UTC"),
            **cycle_options,
        )
        self.scheduler.add_job(
            self.run_rollover,
            CronTrigger(hour=0, minute=0, timezone="UTC"),
            id=ROLLOVER_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"SignalScheduler started: every {self.interval_minutes} min, "
            f"{len(self.timeframes)} timeframes x {len(self.tiers)} tiers",
            extra={"run_on_startup": self.run_on_startup},
        )

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # AsyncIOScheduler may defer the stop to the next loop iteration.
            await asyncio.sleep(0)
        logger.info("SignalScheduler shutdown complete")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        """
        Run one request → score → distribute cycle.

        Returns a report with ``skipped=True`` without doing anything if a
        cycle is already in flight.
        """
        report = CycleReport(started_at=self._clock())
        if self._in_flight:
            logger.warning("Signal cycle already running, skipping")
            report.skipped = True
            report.finished_at = self._clock()
            return report

        self._in_flight = True
        started = time.monotonic()
        try:
            with LogContext():
                logger.info("Signal cycle started")
                await self._cycle(report)
        finally:
            self._in_flight = False
            metrics.cycle_duration_seconds.observe(time.monotonic() - started)
            report.finished_at = self._clock()
            self.last_report = report

        logger.info(
            f"Signal cycle complete: {report.received} received, {report.filtered} filtered, "
            f"{report.below_threshold} below threshold, {report.distributed} distributed, "
            f"{len(report.errors)} errors",
            extra={"commands_created": report.commands_created},
        )
        return report

    async def _cycle(self, report: CycleReport) -> None:
        try:
            summary: RequestSummary = await self.source.request_all(self.timeframes, self.tiers)
        except SignalBridgeError as e:
            logger.error(f"Signal requests failed: {e}")
            report.errors.append(f"request_all: {e}")
            return

        report.requested = summary.requested
        report.received = len(summary.successes)
        report.filtered = len(summary.filtered)
        report.errors.extend(
            f"{failure.timeframe}/{failure.tier}: {failure.error}" for failure in summary.failures
        )

        for item in summary.successes:
            breakdown = self.scorer.breakdown(item.signal)
            signal = item.signal.model_copy(update={"quality_score": breakdown.total})

            if breakdown.total < self.scorer.threshold:
                report.below_threshold += 1
                metrics.signals_filtered_total.labels(reason="below_threshold").inc()
                logger.info(
                    f"Signal {item.timeframe}/{item.tier} scored {breakdown.total}, "
                    f"below threshold {self.scorer.threshold}",
                    extra={"timeframe": item.timeframe, "tier": item.tier, **breakdown.model_dump()},
                )
                continue

            try:
                result = await self.dispatcher.distribute(signal)
            except SignalBridgeError as e:
                logger.error(
                    f"Distribution failed for {item.timeframe}/{item.tier}: {e}",
                    extra={"timeframe": item.timeframe, "tier": item.tier},
                )
                report.errors.append(f"{item.timeframe}/{item.tier}: {e}")
                continue

            report.distributed += 1
            report.commands_created += result.distributed_count
            await self._notify(format_signal_message(signal, result.distributed_count))

        if report.distributed == 0:
            await self._notify(format_no_setup_message())

    async def _notify(self, text: str) -> None:
        if self.notifier is None or not self.recipients:
            return
        result = await self.notifier.broadcast(self.recipients, text)
        if result.failed:
            logger.warning(f"Notification delivered to {result.sent}, failed for {result.failed}")

    async def run_rollover(self) -> list[RolloverResult]:
        """Archive every account's previous day (00:00 UTC job)."""
        with LogContext():
            try:
                return await self.tracker.roll_all_accounts()
            except StoreError as e:
                logger.error(f"Daily rollover failed: {e}")
                return []
