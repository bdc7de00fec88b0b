"""
Configuration for the Signal Bridge service.

All settings can be overridden via environment variables (case-insensitive)
or a ``.env`` file, via pydantic-settings.

Example:
    >>> from apps.signal_bridge.config import get_settings
    >>> settings = get_settings()
    >>> settings.timeframes
    ['5m', '15m']
    >>> settings.risk_config().profile("aggressive").max_lot
    5.0
"""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.risk_management import DailyLimits, RiskConfig, RiskProfile


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Signal bridge configuration settings.

    Example:
        # Via environment variables
        export REDIS_URL="redis://localhost:6379/1"
        export UPSTREAM_URL="https://generator.internal"
        export UPSTREAM_API_KEYS="key-a,key-b"
        export SIGNAL_TIMEFRAMES="5m,15m,1h"
    """

    # ========================================================================
    # Service Configuration
    # ========================================================================

    host: str = "0.0.0.0"
    """Service bind address."""

    port: int = 8010
    """Service port."""

    debug: bool = False
    """Enable auto-reload. Never use in production."""

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR)."""

    # ========================================================================
    # Document Store
    # ========================================================================

    redis_url: str = "redis://localhost:6379/0"
    """Redis backing the document store."""

    store_namespace: str = "bridge"
    """Prefix for every store key, so several bridges can share one Redis."""

    # ========================================================================
    # Upstream Signal Generator
    # ========================================================================

    upstream_url: str = "http://localhost:3000"
    """Base URL of the generator. Signals are requested from ``/api/signal/generate``."""

    upstream_api_keys: str = ""
    """
    Comma-separated API keys sent as ``x-api-key``, rotated round-robin per request.

    Empty means no key header is sent.
    """

    signal_timeframes: str = "5m,15m"
    """Comma-separated timeframes requested each cycle."""

    signal_tiers: str = "10_50,200_500"
    """Comma-separated balance tiers requested for every timeframe."""

    min_confidence: float = 70.0
    """Generator responses below this confidence are dropped before scoring."""

    upstream_timeout_seconds: float = 120.0
    """Per-request timeout. A timeout counts as a retryable failure."""

    upstream_retry_delay_seconds: float = 20.0
    """Fixed wait between attempts on retryable failures."""

    upstream_max_attempts: int = 10
    """Attempts per timeframe/tier before giving up with UpstreamError."""

    upstream_inter_request_delay_seconds: float = 12.0
    """Pause between consecutive timeframe/tier requests, regardless of outcome."""

    # ========================================================================
    # Scheduling
    # ========================================================================

    scheduler_enabled: bool = True
    """Run the hourly signal cycle and the midnight rollover in-process."""

    schedule_interval_minutes: int = 60
    """Minutes between signal cycles."""

    run_on_startup: bool = True
    """Run one cycle shortly after startup instead of waiting a full interval."""

    startup_delay_seconds: float = 5.0
    """Delay before the startup cycle."""

    # ========================================================================
    # Risk
    # ========================================================================

    quality_threshold: int = 65
    """Minimum quality score for a signal to be distributed."""

    default_balance: float = 1000.0
    """Balance assumed for accounts that have never reported one."""

    profit_target_pct: float = 0.15
    """Daily profit target as a share of the day's starting balance."""

    max_loss_pct: float = 0.08
    """Daily loss limit as a share of the day's starting balance."""

    default_risk_profile: str = "conservative"
    """Profile used for accounts with an unknown profile name."""

    conservative_risk_fraction: float = 0.01
    conservative_max_lot: float = 0.5
    aggressive_risk_fraction: float = 0.03
    aggressive_max_lot: float = 5.0

    # ========================================================================
    # Operations
    # ========================================================================

    stale_command_minutes: int = 30
    """Processing commands older than this are listed for reconciliation."""

    admin_token: SecretStr | None = None
    """
    Token required on operator endpoints (``X-Admin-Token``).

    Unset disables the check, which is only appropriate for local development.
    """

    telegram_bot_token: SecretStr | None = None
    """Bot token for broadcast notifications. Unset disables notifications."""

    telegram_chat_ids: str = ""
    """Comma-separated chat ids that receive broadcasts."""

    telegram_api_url: str = "https://api.telegram.org"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def api_keys(self) -> list[str]:
        return _split(self.upstream_api_keys)

    @property
    def timeframes(self) -> list[str]:
        return _split(self.signal_timeframes)

    @property
    def tiers(self) -> list[str]:
        return _split(self.signal_tiers)

    @property
    def chat_ids(self) -> list[str]:
        return _split(self.telegram_chat_ids)

    def risk_config(self) -> RiskConfig:
        """Build the sizing and daily-limit configuration from these settings."""
        return RiskConfig(
            profiles={
                "conservative": RiskProfile(
                    name="conservative",
                    risk_fraction=self.conservative_risk_fraction,
                    max_lot=self.conservative_max_lot,
                ),
                "aggressive": RiskProfile(
                    name="aggressive",
                    risk_fraction=self.aggressive_risk_fraction,
                    max_lot=self.aggressive_max_lot,
                ),
            },
            default_profile=self.default_risk_profile,
            daily_limits=DailyLimits(
                profit_target_pct=self.profit_target_pct,
                max_loss_pct=self.max_loss_pct,
            ),
            default_balance=self.default_balance,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (cached)."""
    return Settings()
