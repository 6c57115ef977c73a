"""
Tests for the platform fee split.
"""

from decimal import Decimal

import pytest

from payments.exceptions import PaymentValidationError
from payments.fees import FeeSplit, current_fee_rate, split


class TestSplit:
    @pytest.mark.parametrize(
        "amount_cents, rate, fee, payout",
        [
            (10000, "0.10", 1000, 9000),
            (999, "0.10", 100, 899),
            (995, "0.10", 100, 895),  # 99.5 rounds half up
            (994, "0.10", 99, 895),
            (1, "0.10", 0, 1),
            (5000, "0", 0, 5000),
            (5000, "1", 5000, 0),
            (0, "0.10", 0, 0),
        ],
    )
    def test_split_values(self, amount_cents, rate, fee, payout):
        result = split(amount_cents, Decimal(rate))

        assert result == FeeSplit(platform_fee_cents=fee, payout_cents=payout)
        assert result.amount_cents == amount_cents

    def test_fee_and_payout_cover_every_amount(self):
        rate = Decimal("0.10")
        num, den = rate.as_integer_ratio()

        for amount in range(100, 1_000_001):
            result = split(amount, rate)

            # half up on exact integers: floor(amount * num / den + 1/2)
            assert result.platform_fee_cents == (2 * amount * num + den) // (2 * den)
            assert result.platform_fee_cents + result.payout_cents == amount

    def test_float_rate_is_read_through_str(self):
        assert split(10000, 0.15).platform_fee_cents == 1500

    def test_negative_amount_rejected(self):
        with pytest.raises(PaymentValidationError) as exc_info:
            split(-1, Decimal("0.10"))

        assert exc_info.value.error_code == "INVALID_AMOUNT"

    @pytest.mark.parametrize("amount", [10.5, "100", True])
    def test_non_integer_amount_rejected(self, amount):
        with pytest.raises(PaymentValidationError):
            split(amount, Decimal("0.10"))

    @pytest.mark.parametrize("rate", ["-0.01", "1.01"])
    def test_rate_out_of_range_rejected(self, rate):
        with pytest.raises(PaymentValidationError) as exc_info:
            split(1000, Decimal(rate))

        assert exc_info.value.error_code == "INVALID_FEE_RATE"


class TestCurrentFeeRate:
    def test_reads_setting(self, settings):
        settings.PLATFORM_FEE_RATE = Decimal("0.2")

        assert current_fee_rate() == Decimal("0.2")
