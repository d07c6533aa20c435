"""Rental pricing - convert a date range and a rate schedule into a total charge."""

from datetime import datetime, timedelta
from decimal import Decimal

from src.models.rental import RentalDetails, RentalPrice
from src.utils.errors import InvalidRange

ONE_DAY = timedelta(days=1)


def count_rental_days(start_date: datetime, end_date: datetime) -> int:
    """
    Number of chargeable days in [start_date, end_date).

    A partial day counts as a full day. Raises InvalidRange for empty or
    reversed ranges.
    """
    if end_date <= start_date:
        raise InvalidRange(
            f"end_date must be after start_date (start={start_date.isoformat()}, end={end_date.isoformat()})"
        )
    days, remainder = divmod(end_date - start_date, ONE_DAY)
    if remainder:
        days += 1
    return days


def calculate_rental_price(
    daily_rate: Decimal,
    weekly_rate: Decimal,
    start_date: datetime,
    end_date: datetime
) -> RentalPrice:
    """
    Price a rental: full weeks at the weekly rate, leftover days at the daily rate.

    Pure and deterministic. The monthly rate is not used here.
    """
    days = count_rental_days(start_date, end_date)
    weeks, remaining_days = divmod(days, 7)
    total = weeks * Decimal(weekly_rate) + remaining_days * Decimal(daily_rate)
    return RentalPrice(
        total_price=total,
        days=days,
        weeks=weeks,
        remaining_days=remaining_days
    )


def price_for(rental: RentalDetails, start_date: datetime, end_date: datetime) -> RentalPrice:
    """Price a range against a listing's rate schedule."""
    return calculate_rental_price(rental.daily_rate, rental.weekly_rate, start_date, end_date)
