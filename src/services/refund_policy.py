"""Refund policy engine - cancellation policy and lead time to refund amount."""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from src.models.rental import CancellationPolicy, RefundDecision

FULL = Decimal("1")
HALF = Decimal("0.5")
NONE = Decimal("0")
CENTS = Decimal("0.01")

# (minimum days until start, fraction refunded), checked in order
REFUND_TIERS: dict[CancellationPolicy, tuple[tuple[int, Decimal], ...]] = {
    CancellationPolicy.MODERATE: ((7, FULL), (3, HALF)),
    CancellationPolicy.STRICT: ((14, FULL), (7, HALF)),
}


def days_until_start(start_date: datetime, now: datetime) -> int:
    """ceil((start_date - now) / 1 day); negative once the rental has begun."""
    days, remainder = divmod(start_date - now, timedelta(days=1))
    if remainder:
        days += 1
    return days


def refund_fraction(policy: CancellationPolicy, days: int) -> Decimal:
    """Fraction of the rental charge refunded for a cancellation `days` before start."""
    policy = CancellationPolicy(policy)
    if policy == CancellationPolicy.FLEXIBLE:
        return FULL

    for threshold, fraction in REFUND_TIERS[policy]:
        if days >= threshold:
            return fraction
    return NONE


def compute_refund(
    policy: CancellationPolicy,
    start_date: datetime,
    now: datetime,
    total_price: Decimal
) -> RefundDecision:
    """Apply a cancellation policy to a booking's charge."""
    days = days_until_start(start_date, now)
    fraction = refund_fraction(policy, days)
    amount = (Decimal(total_price) * fraction).quantize(CENTS, rounding=ROUND_HALF_UP)
    return RefundDecision(
        policy=CancellationPolicy(policy),
        days_until_start=days,
        fraction=fraction,
        amount=amount
    )
