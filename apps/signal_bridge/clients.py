"""
HTTP client for the upstream signal generator.

The generator answers ``POST /api/signal/generate`` with ``{timeframe,
balanceCategory}`` and returns one signal or fails. It is slow (LLM-backed)
and rate limited, so each request is retried on transient failures with a
fixed delay, and combinations are requested one at a time with a pause in
between.

Example:
    >>> client = UpstreamSignalClient("http://localhost:3000", api_keys=["k1", "k2"])
    >>> summary = await client.request_all(["5m", "15m"], ["10_50", "200_500"])
    >>> [s.signal.direction for s in summary.successes]
    [<Direction.SELL: 'SELL'>]
    >>> await client.close()
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from apps.signal_bridge import metrics
from libs.common.exceptions import UpstreamError, ValidationError
from libs.common.logging import get_traced_client
from libs.signal_quality import Signal, normalize_upstream

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/signal/generate"

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

# Timeouts, refused/reset connections and dropped keep-alives.
RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def is_retryable(exc: BaseException) -> bool:
    """True for failures worth another attempt after the retry delay."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


# ==============================================================================
# Results
# ==============================================================================


class SignalResult(BaseModel):
    timeframe: str
    tier: str
    signal: Signal


class RequestFailure(BaseModel):
    timeframe: str
    tier: str
    error: str


class RequestSummary(BaseModel):
    """
    Outcome of requesting every timeframe/tier combination.

    Filtered responses (below the confidence floor) are listed separately and
    count as neither a success nor a failure.
    """

    successes: list[SignalResult] = Field(default_factory=list)
    failures: list[RequestFailure] = Field(default_factory=list)
    filtered: list[tuple[str, str]] = Field(default_factory=list)

    @property
    def requested(self) -> int:
        return len(self.successes) + len(self.failures) + len(self.filtered)


class SignalSource(Protocol):
    """Anything that can produce signals for the scheduler."""

    async def request(self, timeframe: str, tier: str) -> Signal | None: ...

    async def request_all(
        self, timeframes: Sequence[str], tiers: Sequence[str]
    ) -> RequestSummary: ...


# ==============================================================================
# Upstream Signal Client
# ==============================================================================


class KeyRotation:
    """
    Round-robin over the configured API keys.

    Each client owns its own rotation; two clients never share an index.
    """

    def __init__(self, keys: Sequence[str]):
        self._keys = [key for key in keys if key]
        self._index = 0

    def __len__(self) -> int:
        return len(self._keys)

    def next_key(self) -> str | None:
        if not self._keys:
            return None
        key = self._keys[self._index]
        self._index = (self._index + 1) % len(self._keys)
        return key


class UpstreamSignalClient:
    """
    HTTP client for the upstream signal generator.

    Args:
        base_url: Generator base URL (e.g. "http://localhost:3000")
        api_keys: Keys rotated round-robin into the ``x-api-key`` header
        timeout: Per-request timeout in seconds; timeouts are retried
        min_confidence: Responses below this confidence return None
        retry_delay: Seconds between attempts on retryable failures
        max_attempts: Attempts per request before raising UpstreamError
        inter_request_delay: Seconds between combinations in request_all
        transport: Optional httpx transport (tests)
        sleep: Awaitable sleep used for every delay (tests pass a no-op)
    """

    def __init__(
        self,
        base_url: str,
        api_keys: Sequence[str] = (),
        timeout: float = 120.0,
        min_confidence: float = 70.0,
        retry_delay: float = 20.0,
        max_attempts: int = 10,
        inter_request_delay: float = 12.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.min_confidence = min_confidence
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.inter_request_delay = inter_request_delay
        self.keys = KeyRotation(api_keys)
        self._sleep = sleep
        self.client = get_traced_client(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def _attempt(self, timeframe: str, tier: str) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        key = self.keys.next_key()
        if key is not None:
            headers["x-api-key"] = key

        try:
            response = await self.client.post(
                GENERATE_PATH,
                json={"timeframe": timeframe, "balanceCategory": tier},
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            outcome = "retryable" if is_retryable(e) else "fatal"
            metrics.upstream_attempts_total.labels(outcome=outcome).inc()
            raise

        metrics.upstream_attempts_total.labels(outcome="ok").inc()
        try:
            payload = response.json()
        except ValueError as e:
            raise ValidationError(f"Upstream returned a non-JSON body for {timeframe}/{tier}") from e
        if not isinstance(payload, dict):
            raise ValidationError(f"Upstream returned a non-object body for {timeframe}/{tier}")
        return payload

    async def request(self, timeframe: str, tier: str) -> Signal | None:
        """
        Request one signal for a timeframe and balance tier.

        Args:
            timeframe: Chart timeframe, e.g. "5m"
            tier: Balance category, e.g. "10_50"

        Returns:
            The normalised signal, or None if its confidence is below the floor

        Raises:
            UpstreamError: On a non-retryable HTTP failure or after max_attempts
                retryable failures; carries the last underlying error
            ValidationError: If the generator answered with an unusable payload
        """
        logger.info(
            f"Requesting {timeframe} signal for tier {tier}",
            extra={"timeframe": timeframe, "tier": tier, "upstream": self.base_url},
        )

        attempts = 0
        payload: dict[str, Any] = {}
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    payload = await self._attempt(timeframe, tier)
        except httpx.HTTPError as e:
            logger.error(
                f"Upstream request failed for {timeframe}/{tier} after {attempts} attempts: {e}",
                extra={"timeframe": timeframe, "tier": tier, "attempts": attempts},
            )
            raise UpstreamError(
                f"Signal request for {timeframe}/{tier} failed after {attempts} attempts: {e}",
                last_error=e,
                attempts=attempts,
            ) from e

        confidence = payload.get("confidence")
        if not isinstance(confidence, int | float) or confidence < self.min_confidence:
            logger.info(
                f"Upstream signal for {timeframe}/{tier} below confidence floor: {confidence}",
                extra={"timeframe": timeframe, "tier": tier, "min_confidence": self.min_confidence},
            )
            return None

        signal = normalize_upstream(payload, timeframe=timeframe, tier=tier)
        logger.info(
            f"Signal received: {signal.direction.value} ({signal.confidence}%)",
            extra={"timeframe": timeframe, "tier": tier, "attempts": attempts},
        )
        return signal

    async def request_all(
        self, timeframes: Sequence[str], tiers: Sequence[str]
    ) -> RequestSummary:
        """
        Request every timeframe × tier combination, one at a time.

        Waits ``inter_request_delay`` between combinations whatever the
        previous outcome. One failure never stops the remaining requests.
        """
        summary = RequestSummary()
        combinations = [(timeframe, tier) for timeframe in timeframes for tier in tiers]

        for index, (timeframe, tier) in enumerate(combinations):
            if index > 0 and self.inter_request_delay > 0:
                await self._sleep(self.inter_request_delay)

            try:
                signal = await self.request(timeframe, tier)
            except (UpstreamError, ValidationError) as e:
                metrics.upstream_requests_total.labels(outcome="error").inc()
                summary.failures.append(RequestFailure(timeframe=timeframe, tier=tier, error=str(e)))
                continue

            if signal is None:
                metrics.upstream_requests_total.labels(outcome="filtered").inc()
                metrics.signals_filtered_total.labels(reason="low_confidence").inc()
                summary.filtered.append((timeframe, tier))
            else:
                metrics.upstream_requests_total.labels(outcome="success").inc()
                metrics.signals_received_total.labels(timeframe=timeframe, tier=tier).inc()
                summary.successes.append(SignalResult(timeframe=timeframe, tier=tier, signal=signal))

        logger.info(
            f"Upstream requests complete: {len(summary.successes)} received, "
            f"{len(summary.filtered)} filtered, {len(summary.failures)} failed",
            extra={"requested": len(combinations)},
        )
        return summary
