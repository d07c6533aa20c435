"""Availability checks for rental listings.

All intervals are half-open, [start, end): a booking ending exactly when
another starts does not conflict with it.
"""

from datetime import datetime
from typing import Optional

from src.models.rental import RentalDetails


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection test."""
    return a_start < b_end and b_start < a_end


def find_conflict(rental: RentalDetails, start_date: datetime, end_date: datetime) -> Optional[str]:
    """
    Describe the first reason the range cannot be booked, or None if it can.

    Checks the rentable window, then non-cancelled bookings, then blackout
    periods.
    """
    if start_date < rental.available_from or end_date > rental.available_to:
        return "outside_available_window"

    for booking in rental.blocking_bookings():
        if intervals_overlap(start_date, end_date, booking.start_date, booking.end_date):
            return f"overlaps_booking:{booking.booking_id}"

    for period in rental.unavailable_dates:
        if intervals_overlap(start_date, end_date, period.start_date, period.end_date):
            return f"overlaps_blackout:{period.reason or 'unspecified'}"

    return None


def is_available(rental: RentalDetails, start_date: datetime, end_date: datetime) -> bool:
    return find_conflict(rental, start_date, end_date) is None
