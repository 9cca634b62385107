"""
Money calculators. All amounts are integers in the smallest currency unit.

Rounding is part of the contract with players and owners:
advance and commission round up, the 50% tier rounds down.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR

ADVANCE_RATE = Decimal("0.10")
COMMISSION_RATE = Decimal("0.05")
PROCESSING_FEE = 50

TIER_FULL = "FULL"
TIER_PARTIAL_50 = "PARTIAL_50"
TIER_NONE = "NONE"
TIER_LATE_CONFLICT = "late_payment_conflict"

_TIER_FACTORS = {
    TIER_FULL: (Decimal("1.0"), ROUND_CEILING),
    TIER_PARTIAL_50: (Decimal("0.5"), ROUND_FLOOR),
}


def _rate(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _apply(amount: int, rate, rounding) -> int:
    return int((Decimal(int(amount)) * _rate(rate)).to_integral_value(rounding=rounding))


def advance_amount(total: int, rate=ADVANCE_RATE) -> int:
    return _apply(total, rate, ROUND_CEILING)


def platform_commission(total: int, rate=COMMISSION_RATE, advance_rate=ADVANCE_RATE) -> int:
    # the platform is paid out of the advance, never more than it
    return min(_apply(total, rate, ROUND_CEILING), advance_amount(total, advance_rate))


def owner_advance_credit(advance: int, commission: int) -> int:
    return advance - commission


def remaining_amount(total: int, advance: int) -> int:
    return total - advance


@dataclass(frozen=True)
class BookingPricing:
    total_amount: int
    advance_amount: int
    platform_commission: int
    owner_advance_credit: int
    remaining_amount: int


def booking_pricing(total: int, advance_rate=ADVANCE_RATE, commission_rate=COMMISSION_RATE) -> BookingPricing:
    if total < 0:
        raise ValueError("total must be non-negative")
    advance = advance_amount(total, advance_rate)
    commission = platform_commission(total, commission_rate, advance_rate)
    return BookingPricing(
        total_amount=total,
        advance_amount=advance,
        platform_commission=commission,
        owner_advance_credit=owner_advance_credit(advance, commission),
        remaining_amount=remaining_amount(total, advance),
    )


def price_for_duration(prices, minutes: int):
    """Look up a duration in a JSON price table (keys may be str or int)."""
    if not prices:
        return None
    value = prices.get(str(int(minutes)), prices.get(int(minutes)))
    return int(value) if value is not None else None


def refund_for_tier(advance: int, tier: str, processing_fee: int = PROCESSING_FEE) -> tuple[int, int]:
    """
    Returns (refund_amount, platform_fee_retained).
    NONE keeps the whole advance; the other tiers deduct the processing fee
    from the rounded base and never go below zero.
    """
    if tier == TIER_NONE:
        return 0, advance
    if tier == TIER_LATE_CONFLICT:
        return advance, 0
    if tier not in _TIER_FACTORS:
        raise ValueError(f"unknown refund tier {tier}")

    factor, rounding = _TIER_FACTORS[tier]
    refundable = _apply(advance, factor, rounding)
    net = max(0, refundable - processing_fee)
    return net, advance - net


def parse_amount(value) -> Decimal:
    """Parse a delivered amount string ("1000", "1000.00"). Raises ValueError."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError):
        raise ValueError(f"invalid amount {value!r}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"invalid amount {value!r}")
    return amount


def to_minor_units(amount: Decimal):
    """Integer minor units, or None when the amount has a fractional part."""
    if amount != amount.to_integral_value():
        return None
    return int(amount)
