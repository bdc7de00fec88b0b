"""
Application context for the Signal Bridge.

Holds every long-lived component so route handlers receive them through
``Depends(get_context)`` instead of module globals, and tests can inject a
context built on fakeredis and stub signal sources.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from apps.signal_bridge.clients import SignalSource, UpstreamSignalClient
from apps.signal_bridge.config import Settings
from apps.signal_bridge.dispatcher import CommandDispatcher
from apps.signal_bridge.notifier import BaseNotifier, TelegramNotifier
from apps.signal_bridge.scheduler import SignalScheduler
from libs.document_store import (
    BRIDGE_COLLECTIONS,
    DocumentStore,
    RedisConfig,
    RedisDocumentStore,
    create_async_redis,
)
from libs.risk_management import DailyRiskTracker, RiskSizer
from libs.signal_quality import QualityScorer

logger = logging.getLogger(__name__)


@dataclass
class BridgeContext:
    settings: Settings
    store: DocumentStore
    sizer: RiskSizer
    tracker: DailyRiskTracker
    scorer: QualityScorer
    dispatcher: CommandDispatcher
    source: SignalSource
    scheduler: SignalScheduler
    notifier: BaseNotifier | None = None

    async def close(self) -> None:
        """Release HTTP clients and store connections."""
        await self.scheduler.shutdown()
        if isinstance(self.source, UpstreamSignalClient):
            await self.source.close()
        if self.notifier is not None:
            await self.notifier.close()
        await self.store.close()


def build_context(
    settings: Settings,
    store: DocumentStore | None = None,
    source: SignalSource | None = None,
    notifier: BaseNotifier | None = None,
) -> BridgeContext:
    """
    Wire every component from settings.

    ``store``, ``source`` and ``notifier`` override the defaults built from
    settings (Redis store, upstream HTTP client, Telegram when a bot token is
    configured).
    """
    if store is None:
        redis = create_async_redis(RedisConfig(url=settings.redis_url))
        store = RedisDocumentStore(
            redis, collections=BRIDGE_COLLECTIONS, namespace=settings.store_namespace
        )

    if source is None:
        source = UpstreamSignalClient(
            settings.upstream_url,
            api_keys=settings.api_keys,
            timeout=settings.upstream_timeout_seconds,
            min_confidence=settings.min_confidence,
            retry_delay=settings.upstream_retry_delay_seconds,
            max_attempts=settings.upstream_max_attempts,
            inter_request_delay=settings.upstream_inter_request_delay_seconds,
        )

    if notifier is None and settings.telegram_bot_token is not None:
        notifier = TelegramNotifier(
            settings.telegram_bot_token.get_secret_value(), api_url=settings.telegram_api_url
        )
    elif notifier is None:
        logger.info("Telegram bot token not configured, notifications disabled")

    risk_config = settings.risk_config()
    sizer = RiskSizer(risk_config)
    tracker = DailyRiskTracker(store, risk_config)
    scorer = QualityScorer(threshold=settings.quality_threshold)
    dispatcher = CommandDispatcher(store, sizer, tracker)
    scheduler = SignalScheduler(
        source,
        scorer,
        dispatcher,
        tracker,
        timeframes=settings.timeframes,
        tiers=settings.tiers,
        notifier=notifier,
        recipients=settings.chat_ids,
        interval_minutes=settings.schedule_interval_minutes,
        run_on_startup=settings.run_on_startup,
        startup_delay_seconds=settings.startup_delay_seconds,
    )

    return BridgeContext(
        settings=settings,
        store=store,
        sizer=sizer,
        tracker=tracker,
        scorer=scorer,
        dispatcher=dispatcher,
        source=source,
        scheduler=scheduler,
        notifier=notifier,
    )
