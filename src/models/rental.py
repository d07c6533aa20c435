"""Rental models - rate schedule, bookings and blackout periods of a rental listing."""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from pydantic import AwareDatetime, BaseModel, Field

from src.utils.errors import NotFound


class CancellationPolicy(str, Enum):
    """Refund policy tag applied when a booking is cancelled."""
    FLEXIBLE = "flexible"
    MODERATE = "moderate"
    STRICT = "strict"


class BookingStatus(str, Enum):
    """Booking lifecycle states.

    ACTIVE is part of the stored vocabulary only; no transition here sets it
    and completion requires CONFIRMED.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Rental charge status."""
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class DepositStatus(str, Enum):
    """Security deposit status. DEDUCTED is recorded by damage claims handled outside the engine."""
    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    DEDUCTED = "deducted"


class BlackoutPeriod(BaseModel):
    """Explicitly unavailable interval, independent of bookings."""
    start_date: AwareDatetime = Field(..., description="Inclusive start")
    end_date: AwareDatetime = Field(..., description="Exclusive end")
    reason: Optional[str] = Field(None, description="Why the dates are blocked")

    def model_post_init(self, __context: Any) -> None:
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")


class Booking(BaseModel):
    """Rental booking. Never deleted, only status-transitioned."""
    booking_id: str = Field(..., description="Booking ID (ULID), unique within the listing")
    renter_id: str = Field(..., description="Renter user ID (reference only)")
    start_date: AwareDatetime = Field(..., description="Inclusive start")
    end_date: AwareDatetime = Field(..., description="Exclusive end")
    total_price: Decimal = Field(..., ge=0, description="Rental charge, excluding deposit")
    payment_intent_id: Optional[str] = Field(None, description="Provider reference of the payment hold")
    status: BookingStatus = Field(default=BookingStatus.PENDING)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    security_deposit_status: DepositStatus = Field(default=DepositStatus.PENDING)
    cancellation_reason: Optional[str] = Field(None, description="Set only on cancellation")
    refund_amount: Optional[Decimal] = Field(None, description="Refund computed on cancellation")
    created_at: Optional[AwareDatetime] = None

    def model_post_init(self, __context: Any) -> None:
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")


class RentalDetails(BaseModel):
    """Rental details owned by a listing with listing_type=rent."""
    daily_rate: Decimal = Field(..., gt=0, description="Charge per day")
    weekly_rate: Decimal = Field(..., gt=0, description="Charge per full 7-day week")
    monthly_rate: Decimal = Field(..., gt=0, description="Subscription-style monthly charge")
    minimum_rental_period: int = Field(default=1, ge=1, description="Minimum rental length in days")
    available_from: AwareDatetime = Field(..., description="Start of the rentable window")
    available_to: AwareDatetime = Field(..., description="End of the rentable window")
    security_deposit: Decimal = Field(default=Decimal("0"), ge=0, description="Refundable hold")
    cancellation_policy: CancellationPolicy = Field(default=CancellationPolicy.MODERATE)
    bookings: dict[str, Booking] = Field(default_factory=dict, description="Bookings keyed by booking_id")
    unavailable_dates: list[BlackoutPeriod] = Field(default_factory=list, description="Blackout intervals")

    def model_post_init(self, __context: Any) -> None:
        if self.available_from >= self.available_to:
            raise ValueError("available_from must be before available_to")

    def get_booking(self, booking_id: str) -> Booking:
        """Look up a booking or raise NotFound."""
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFound(f"Booking not found: {booking_id}")
        return booking

    def add_booking(self, booking: Booking) -> None:
        if booking.booking_id in self.bookings:
            raise ValueError(f"Duplicate booking id: {booking.booking_id}")
        self.bookings[booking.booking_id] = booking

    def blocking_bookings(self) -> list[Booking]:
        """Bookings that still occupy their dates (everything not cancelled)."""
        return [b for b in self.bookings.values() if b.status != BookingStatus.CANCELLED]


class RentalPrice(BaseModel):
    """Result of the pricing calculation."""
    total_price: Decimal
    days: int
    weeks: int
    remaining_days: int


class RentalQuote(BaseModel):
    """Availability answer paired with the price of the range."""
    is_available: bool
    total_price: Decimal
    days: int
    weeks: int
    remaining_days: int
    security_deposit: Decimal


class RefundDecision(BaseModel):
    """Outcome of applying a cancellation policy."""
    policy: CancellationPolicy
    days_until_start: int
    fraction: Decimal
    amount: Decimal
