# chitfund/commission.py
"""
Platform commission and money conversions.

Amounts travel as major-unit decimals (rupees) in JSON and the ledger, and as
integer minor units (paise) towards Razorpay. Commission is computed on minor
units so the fee charged and the fee recorded are the same number.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from chitfund import config

MINOR_UNITS = 100

Number = Union[int, float, str, Decimal]


def to_money(value: Number) -> Decimal:
    """Normalize to 2 decimal places (money)."""
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_minor(amount: Number) -> int:
    """Rupees -> paise."""
    return int((Decimal(str(amount)) * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor(minor: int) -> Decimal:
    """Paise -> rupees."""
    return to_money(Decimal(int(minor)) / MINOR_UNITS)


@dataclass(frozen=True)
class CommissionPolicy:
    rate: Decimal = Decimal("0.02")

    def commission(self, minor_units: int) -> int:
        """
        Fee on `minor_units`, rounded half-up to a whole minor unit.
        commission(1000) == 20, commission(999) == 20 (19.98), commission(25) == 1 (0.5).
        """
        if minor_units < 0:
            raise ValueError("amount must be >= 0")
        fee = Decimal(int(minor_units)) * self.rate
        return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def split(self, base: Number):
        """
        Return (base_minor, commission_minor, total_minor) for a rupee base amount.
        """
        base_minor = to_minor(base)
        fee = self.commission(base_minor)
        return base_minor, fee, base_minor + fee


def default_policy() -> CommissionPolicy:
    return CommissionPolicy(rate=Decimal(str(config.COMMISSION_RATE)))
