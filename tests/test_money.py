from decimal import Decimal

import pytest

from services.money import (
    TIER_FULL,
    TIER_LATE_CONFLICT,
    TIER_NONE,
    TIER_PARTIAL_50,
    advance_amount,
    booking_pricing,
    parse_amount,
    platform_commission,
    price_for_duration,
    refund_for_tier,
    to_minor_units,
)


class TestBookingPricing:
    def test_round_total(self) -> None:
        pricing = booking_pricing(1000)
        assert pricing.advance_amount == 100
        assert pricing.platform_commission == 50
        assert pricing.owner_advance_credit == 50
        assert pricing.remaining_amount == 900

    def test_advance_and_commission_round_up(self) -> None:
        pricing = booking_pricing(1234)
        # 123.4 -> 124, 61.7 -> 62
        assert pricing.advance_amount == 124
        assert pricing.platform_commission == 62
        assert pricing.owner_advance_credit == 62
        assert pricing.remaining_amount == 1110

    def test_tiny_total_never_gives_owner_negative_credit(self) -> None:
        pricing = booking_pricing(1)
        assert pricing.advance_amount == 1
        assert pricing.platform_commission == 1
        assert pricing.owner_advance_credit == 0

    def test_commission_capped_at_advance(self) -> None:
        assert platform_commission(1000, rate="0.50", advance_rate="0.10") == 100

    def test_rates_accept_strings(self) -> None:
        assert advance_amount(999, "0.10") == 100

    def test_negative_total_rejected(self) -> None:
        with pytest.raises(ValueError):
            booking_pricing(-1)


class TestRefundTiers:
    @pytest.mark.parametrize(
        "tier, expected",
        [
            (TIER_FULL, (50, 50)),
            (TIER_PARTIAL_50, (0, 100)),
            (TIER_NONE, (0, 100)),
            (TIER_LATE_CONFLICT, (100, 0)),
        ],
    )
    def test_advance_of_100(self, tier, expected) -> None:
        assert refund_for_tier(100, tier, processing_fee=50) == expected

    def test_partial_rounds_down(self) -> None:
        # 50% of 301 is 150.5 -> 150, minus the fee
        assert refund_for_tier(301, TIER_PARTIAL_50, processing_fee=50) == (100, 201)

    def test_refund_plus_retained_is_the_advance(self) -> None:
        for advance in (0, 1, 49, 50, 51, 100, 777):
            for tier in (TIER_FULL, TIER_PARTIAL_50, TIER_NONE):
                refund, retained = refund_for_tier(advance, tier, processing_fee=50)
                assert refund >= 0
                assert refund + retained == advance

    def test_unknown_tier(self) -> None:
        with pytest.raises(ValueError):
            refund_for_tier(100, "HALF")


class TestAmounts:
    def test_price_table_with_string_keys(self) -> None:
        assert price_for_duration({"60": 1000}, 60) == 1000
        assert price_for_duration({60: 1000}, 60) == 1000
        assert price_for_duration({"60": 1000}, 90) is None
        assert price_for_duration(None, 60) is None

    def test_parse_amount(self) -> None:
        assert parse_amount("100.00") == Decimal("100.00")
        assert parse_amount(" 100 ") == Decimal("100")

    @pytest.mark.parametrize("raw", ["abc", "", "-5", "NaN", None])
    def test_parse_amount_rejects_garbage(self, raw) -> None:
        with pytest.raises(ValueError):
            parse_amount(raw)

    def test_minor_units(self) -> None:
        assert to_minor_units(Decimal("100.00")) == 100
        assert to_minor_units(Decimal("100.50")) is None
