"""
Platform fee calculation.

The platform keeps ``fee_rate`` of every payment and the expert receives the
rest. The rate is read from settings once, when the payment intent is
created, and stored on the Payment. Everything after that (project updates,
refunds, reconciliation) reads the stored split instead of recomputing it.

Usage:
    from payments.fees import current_fee_rate, split

    rate = current_fee_rate()            # Decimal("0.10")
    fee_split = split(10000, rate)       # FeeSplit(platform_fee_cents=1000, payout_cents=9000)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

from payments.exceptions import PaymentValidationError


@dataclass(frozen=True)
class FeeSplit:
    """Gross amount divided between platform and expert, in minor units."""

    platform_fee_cents: int
    payout_cents: int

    @property
    def amount_cents(self) -> int:
        return self.platform_fee_cents + self.payout_cents


def split(amount_cents: int, fee_rate: Decimal) -> FeeSplit:
    """
    Split a gross amount into platform fee and expert payout.

    The fee is ``amount * fee_rate`` rounded half up to a whole minor unit;
    the payout is the remainder, so the two always sum to the amount.

    Examples:
        split(10000, Decimal("0.10"))  # FeeSplit(1000, 9000)
        split(999, Decimal("0.10"))    # FeeSplit(100, 899)
        split(995, Decimal("0.10"))    # FeeSplit(100, 895), 99.5 rounds up

    Raises:
        PaymentValidationError: If the amount is negative or the rate is
            outside [0, 1]
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise PaymentValidationError(
            "Amount must be an integer number of minor units",
            error_code="INVALID_AMOUNT",
            details={"amount_cents": repr(amount_cents)},
        )
    if amount_cents < 0:
        raise PaymentValidationError(
            "Amount cannot be negative",
            error_code="INVALID_AMOUNT",
            details={"amount_cents": amount_cents},
        )

    rate = Decimal(str(fee_rate))
    if rate < 0 or rate > 1:
        raise PaymentValidationError(
            "Fee rate must be between 0 and 1",
            error_code="INVALID_FEE_RATE",
            details={"fee_rate": str(rate)},
        )

    platform_fee = int(
        (Decimal(amount_cents) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )
    return FeeSplit(platform_fee_cents=platform_fee, payout_cents=amount_cents - platform_fee)


def current_fee_rate() -> Decimal:
    """Platform fee rate configured right now (PLATFORM_FEE_RATE)."""
    return Decimal(str(settings.PLATFORM_FEE_RATE))
