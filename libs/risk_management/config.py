"""
Risk management configuration models.

Defines the per-account risk profiles used for position sizing and the daily
profit/loss limits that drive the daily circuit breaker.

Example:
    >>> from libs.risk_management.config import RiskConfig
    >>> config = RiskConfig()
    >>> config.profile("aggressive").max_lot
    5.0
    >>> config.profile("unknown").name
    'conservative'
    >>> config.daily_limits.max_loss_pct
    0.08
"""

from pydantic import BaseModel, Field, model_validator

DEFAULT_PROFILE = "conservative"


class RiskProfile(BaseModel):
    """
    Sizing parameters for one risk profile.

    Attributes:
        name: Profile key stored on the account ("conservative", "aggressive")
        risk_fraction: Share of balance risked per trade.
            Example: 0.01 means a 1000 balance risks 10 per trade.
        max_lot: Upper bound on any sized position, in standard lots.
    """

    name: str
    risk_fraction: float = Field(..., gt=0, le=0.25, description="Share of balance risked per trade")
    max_lot: float = Field(..., ge=0.01, description="Largest lot size the profile may open")


class DailyLimits(BaseModel):
    """
    Daily profit target and loss limit, as a share of the day's starting balance.

    Example:
        >>> limits = DailyLimits()
        >>> 1000 * limits.profit_target_pct, 1000 * limits.max_loss_pct
        (150.0, 80.0)

    Notes:
        - Reaching either threshold moves the account's day to a terminal status
        - Thresholds are fixed when the day's record is created
    """

    profit_target_pct: float = Field(default=0.15, gt=0, le=10)
    max_loss_pct: float = Field(default=0.08, gt=0, le=1)


def default_profiles() -> dict[str, RiskProfile]:
    return {
        "conservative": RiskProfile(name="conservative", risk_fraction=0.01, max_lot=0.5),
        "aggressive": RiskProfile(name="aggressive", risk_fraction=0.03, max_lot=5.0),
    }


class RiskConfig(BaseModel):
    """
    Complete risk configuration for sizing and daily limits.

    Attributes:
        profiles: Risk profiles by name; must contain the default profile
        default_profile: Profile used for accounts with an unknown profile name
        daily_limits: Daily profit target and loss limit
        default_balance: Balance assumed for accounts that have never reported one
        pip_value: Currency value of one pip on one standard lot
        pips_per_price_unit: Pips in one unit of price movement
        min_lot: Smallest lot size the broker accepts

    See Also:
        - apps/signal_bridge/config.py for environment variable mapping
    """

    profiles: dict[str, RiskProfile] = Field(default_factory=default_profiles)
    default_profile: str = DEFAULT_PROFILE
    daily_limits: DailyLimits = Field(default_factory=DailyLimits)
    default_balance: float = Field(default=1000.0, gt=0)
    pip_value: float = Field(default=10.0, gt=0)
    pips_per_price_unit: float = Field(default=10.0, gt=0)
    min_lot: float = Field(default=0.01, gt=0)

    @model_validator(mode="after")
    def _default_profile_exists(self) -> "RiskConfig":
        if self.default_profile not in self.profiles:
            raise ValueError(f"default_profile '{self.default_profile}' is not a configured profile")
        return self

    def profile(self, name: str | None) -> RiskProfile:
        """Return the named profile, falling back to the default profile."""
        if name and name in self.profiles:
            return self.profiles[name]
        return self.profiles[self.default_profile]
