"""
Risk-based position sizing.

Lot size is the amount of money the account is willing to lose on the trade
divided by what one lot loses if the stop is hit::

    risk_amount = balance * profile.risk_fraction
    lot_size    = risk_amount / (stop_distance_pips * pip_value)

rounded to 2 decimals and clamped to ``[min_lot, profile.max_lot]``.

Example:
    >>> sizer = RiskSizer(RiskConfig())
    >>> sizer.size(balance=1000, risk_profile="conservative", stop_distance_pips=50)
    0.02
    >>> sizer.size(balance=1_000_000, risk_profile="conservative", stop_distance_pips=50)
    0.5

Notes:
    - Sizing never raises; bad inputs produce the minimum lot
    - Pip value is fixed per instrument (10 per pip per standard lot for gold)
"""

import logging
import math
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from libs.risk_management.config import RiskConfig

logger = logging.getLogger(__name__)


class SizingResult(BaseModel):
    """Lot size together with the inputs that produced it."""

    lot_size: float
    risk_amount: float
    profile: str
    stop_distance_pips: float


def _round_lots(value: float) -> float:
    return float(Decimal(str(round(value, 8))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _usable(value: float) -> bool:
    return math.isfinite(value) and value > 0


class RiskSizer:
    """
    Converts balance, risk profile and stop distance into a lot size.

    Args:
        config: Risk profiles, pip value and minimum lot
    """

    def __init__(self, config: RiskConfig | None = None):
        self.config = config or RiskConfig()

    def stop_distance_pips(self, entry: float, stop_loss: float) -> float:
        """
        Convert the entry/stop price distance into pips.

        Example:
            >>> RiskSizer().stop_distance_pips(2650.0, 2655.0)
            50.0
        """
        return abs(entry - stop_loss) * self.config.pips_per_price_unit

    def size_details(
        self, balance: float | None, risk_profile: str | None, stop_distance_pips: float | None
    ) -> SizingResult:
        profile = self.config.profile(risk_profile)
        min_lot = self.config.min_lot

        if (
            balance is None
            or stop_distance_pips is None
            or not _usable(balance)
            or not _usable(stop_distance_pips)
        ):
            logger.warning(
                "Unusable sizing inputs, falling back to minimum lot",
                extra={"balance": balance, "stop_distance_pips": stop_distance_pips},
            )
            return SizingResult(
                lot_size=min_lot,
                risk_amount=0.0,
                profile=profile.name,
                stop_distance_pips=stop_distance_pips or 0.0,
            )

        risk_amount = balance * profile.risk_fraction
        raw_lot = risk_amount / (stop_distance_pips * self.config.pip_value)
        lot_size = min(max(_round_lots(raw_lot), min_lot), profile.max_lot)

        return SizingResult(
            lot_size=lot_size,
            risk_amount=risk_amount,
            profile=profile.name,
            stop_distance_pips=stop_distance_pips,
        )

    def size(
        self, balance: float | None, risk_profile: str | None, stop_distance_pips: float | None
    ) -> float:
        """Return the lot size, always within ``[min_lot, profile.max_lot]``."""
        return self.size_details(balance, risk_profile, stop_distance_pips).lot_size
