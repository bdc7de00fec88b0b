"""
Subscriber notifications for distributed signals.

Notification is fire-and-forget: a failed delivery is logged and reported in
the returned :class:`DeliveryResult`, it never fails the signal cycle.
"""

from __future__ import annotations

import html
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import httpx
from pydantic import BaseModel, Field

from apps.signal_bridge import metrics
from libs.common.logging import get_traced_client
from libs.signal_quality import Direction, Signal

logger = logging.getLogger(__name__)


class DeliveryResult(BaseModel):
    """Result of one delivery attempt."""

    success: bool
    recipient: str
    message_id: str | None = None
    error: str | None = None
    retryable: bool = False


class BroadcastResult(BaseModel):
    sent: int = 0
    failed: int = 0
    results: list[DeliveryResult] = Field(default_factory=list)


def format_signal_message(signal: Signal, distributed_count: int | None = None) -> str:
    """Render a distributed signal as Telegram HTML."""
    side = "🔵 BUY" if signal.direction == Direction.BUY else "🟠 SELL"
    take_profit = signal.first_take_profit
    lines = [
        f"🚀 <b>NEW SETUP: {side} {html.escape(signal.symbol)}</b>",
        f"⏰ <b>Timeframe:</b> {html.escape((signal.timeframe or '-').upper())}",
        f"📊 <b>Confidence:</b> {signal.confidence:g}%",
    ]
    if signal.quality_score is not None:
        lines.append(f"🏆 <b>Quality:</b> {signal.quality_score}/100")
    lines += [
        "",
        f"📍 <b>Entry:</b> {signal.entry}",
        f"🛑 <b>Stop Loss:</b> {signal.stop_loss}",
        f"🏁 <b>Target:</b> {take_profit if take_profit is not None else '-'}",
    ]
    context = signal.confluence.market_context
    if context is not None and context.description:
        lines += ["", f"📈 {html.escape(context.description)}"]
    if distributed_count is not None:
        lines += ["", f"<i>Sent to {distributed_count} accounts.</i>"]
    return "\n".join(lines)


def format_no_setup_message() -> str:
    return (
        "📊 <b>Market Update</b>\n"
        "⏰ <b>Status:</b> No qualifying setup this cycle.\n\n"
        "⏳ Monitoring next hour..."
    )


class BaseNotifier(ABC):
    """Abstract notifier. Implementations do network I/O only."""

    channel_type: str

    @abstractmethod
    async def send(self, recipient: str, text: str) -> DeliveryResult:
        """Deliver ``text`` to one recipient."""
        raise NotImplementedError

    async def close(self) -> None:
        return None

    async def broadcast(self, recipients: Sequence[str], text: str) -> BroadcastResult:
        """Send to every recipient; one failure does not stop the rest."""
        result = BroadcastResult()
        for recipient in recipients:
            delivery = await self.send(recipient, text)
            result.results.append(delivery)
            if delivery.success:
                result.sent += 1
            else:
                result.failed += 1
            metrics.notifications_sent_total.labels(
                status="success" if delivery.success else "error"
            ).inc()
        return result


class TelegramNotifier(BaseNotifier):
    """
    Telegram Bot API ``sendMessage`` with HTML parse mode.

    Args:
        bot_token: Bot token from BotFather
        api_url: Bot API base URL
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests)
    """

    channel_type = "telegram"

    def __init__(
        self,
        bot_token: str,
        api_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token
        self.client = get_traced_client(
            base_url=api_url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def send(self, recipient: str, text: str) -> DeliveryResult:
        logger.info("telegram_send_attempt", extra={"chat_id": recipient})
        try:
            response = await self.client.post(
                f"/bot{self._bot_token}/sendMessage",
                json={"chat_id": recipient, "text": text, "parse_mode": "HTML"},
            )
        except httpx.TimeoutException:
            logger.error("telegram_timeout", extra={"chat_id": recipient})
            return DeliveryResult(success=False, recipient=recipient, error="timeout", retryable=True)
        except httpx.HTTPError as exc:
            logger.error(
                "telegram_connection_error",
                extra={"chat_id": recipient, "error": type(exc).__name__},
            )
            return DeliveryResult(
                success=False, recipient=recipient, error=type(exc).__name__, retryable=True
            )

        if response.status_code != 200:
            retryable = response.status_code == 429 or response.status_code >= 500
            description = _description(response)
            # Blocked bots are routine; keep them out of error logs.
            level = logging.INFO if response.status_code == 403 else logging.ERROR
            logger.log(
                level,
                "telegram_send_failed",
                extra={
                    "chat_id": recipient,
                    "status": response.status_code,
                    "retryable": retryable,
                },
            )
            return DeliveryResult(
                success=False,
                recipient=recipient,
                error=f"Telegram {response.status_code}: {description}",
                retryable=retryable,
            )

        message_id = response.json().get("result", {}).get("message_id")
        logger.info("telegram_sent", extra={"chat_id": recipient, "message_id": message_id})
        return DeliveryResult(
            success=True,
            recipient=recipient,
            message_id=str(message_id) if message_id is not None else None,
        )


def _description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("description", ""))
    return ""


__all__ = [
    "BaseNotifier",
    "BroadcastResult",
    "DeliveryResult",
    "TelegramNotifier",
    "format_no_setup_message",
    "format_signal_message",
]
