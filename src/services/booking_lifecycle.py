"""Booking lifecycle - create, confirm, cancel and complete rental bookings.

Functions mutate the listing passed in and return a transition result that
lists the payment requests and notification events to dispatch once the
listing is saved. Nothing here performs I/O or reads the system clock.
"""

from datetime import datetime
from typing import Any, Optional

from src.models.listing import Listing
from src.models.notification import DomainEvent, NotificationType
from src.models.payment import PaymentKind, PaymentRequest, PaymentRequestStatus
from src.models.rental import (
    Booking,
    BookingStatus,
    DepositStatus,
    PaymentStatus,
)
from src.models.transitions import BookingCancelled, BookingCreated, BookingUpdated
from src.services.availability import find_conflict
from src.services.pricing import price_for
from src.services.refund_policy import compute_refund
from src.utils.errors import InvalidRange, InvalidState, Unavailable
from src.utils.ids import generate_booking_id
from src.utils.logging import get_structured_logger, mask_user_id, sanitize_free_text

logger = get_structured_logger(__name__)

CANCELLABLE = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def _event(listing: Listing, recipient_id: str, event_type: NotificationType, booking: Booking, **extra: Any) -> DomainEvent:
    payload = {
        "booking_id": booking.booking_id,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "total_price": str(booking.total_price),
    }
    payload.update(extra)
    return DomainEvent(
        recipient_id=recipient_id,
        event_type=event_type,
        listing_id=listing.listing_id,
        payload=payload
    )


def _find_hold(listing: Listing, booking_id: str) -> Optional[PaymentRequest]:
    for request in listing.payment_requests:
        if request.kind == PaymentKind.HOLD and request.booking_id == booking_id:
            return request
    return None


def create_booking(
    listing: Listing,
    renter_id: str,
    start_date: datetime,
    end_date: datetime,
    now: datetime
) -> BookingCreated:
    """
    Book [start_date, end_date) for a renter.

    Records a payment hold for the rental charge plus the security deposit.
    Raises NotRentalListing, InvalidRange or Unavailable.
    """
    rental = listing.require_rental()
    price = price_for(rental, start_date, end_date)

    if price.days < rental.minimum_rental_period:
        raise InvalidRange(
            f"Rental of {price.days} day(s) is shorter than the minimum of {rental.minimum_rental_period}"
        )

    conflict = find_conflict(rental, start_date, end_date)
    if conflict:
        logger.info(
            "Booking rejected, dates unavailable",
            listing_id=listing.listing_id,
            renter_id=mask_user_id(renter_id),
            conflict=conflict
        )
        raise Unavailable(f"Selected dates are not available ({conflict})")

    booking = Booking(
        booking_id=generate_booking_id(),
        renter_id=renter_id,
        start_date=start_date,
        end_date=end_date,
        total_price=price.total_price,
        created_at=now
    )
    rental.add_booking(booking)

    hold = PaymentRequest(
        kind=PaymentKind.HOLD,
        amount=price.total_price + rental.security_deposit,
        currency=listing.currency,
        booking_id=booking.booking_id,
        created_at=now
    )
    listing.payment_requests.append(hold)
    listing.updated_at = now

    logger.info(
        "Booking created",
        listing_id=listing.listing_id,
        booking_id=booking.booking_id,
        renter_id=mask_user_id(renter_id),
        days=price.days,
        total_price=str(price.total_price),
        hold_amount=str(hold.amount)
    )

    return BookingCreated(
        listing_id=listing.listing_id,
        booking=booking,
        price=price,
        payments=[hold],
        events=[
            _event(listing, listing.seller_id, NotificationType.RENTAL_REQUEST, booking, renter_id=renter_id)
        ]
    )


def confirm_booking(listing: Listing, booking_id: str, now: datetime) -> BookingUpdated:
    """Pending -> confirmed; marks the charge paid and the deposit held."""
    rental = listing.require_rental()
    booking = rental.get_booking(booking_id)

    if booking.status != BookingStatus.PENDING:
        raise InvalidState(f"Booking {booking_id} cannot be confirmed from {booking.status.value}")

    booking.status = BookingStatus.CONFIRMED
    booking.payment_status = PaymentStatus.PAID
    booking.security_deposit_status = DepositStatus.HELD
    listing.updated_at = now

    logger.info("Booking confirmed", listing_id=listing.listing_id, booking_id=booking_id)

    return BookingUpdated(
        listing_id=listing.listing_id,
        booking=booking,
        events=[_event(listing, booking.renter_id, NotificationType.RENTAL_CONFIRMED, booking)]
    )


def cancel_booking(
    listing: Listing,
    booking_id: str,
    now: datetime,
    reason: Optional[str] = None
) -> BookingCancelled:
    """
    Cancel a pending or confirmed booking and record the refund it is owed.

    The refund follows the listing's cancellation policy. A hold that never
    reached the payment collaborator is voided instead of refunded.
    Cancelling twice raises InvalidState.
    """
    rental = listing.require_rental()
    booking = rental.get_booking(booking_id)

    if booking.status not in CANCELLABLE:
        raise InvalidState(f"Booking {booking_id} cannot be cancelled from {booking.status.value}")

    refund = compute_refund(rental.cancellation_policy, booking.start_date, now, booking.total_price)

    payments = []
    hold = _find_hold(listing, booking_id)
    if hold is not None and hold.dispatchable:
        hold.status = PaymentRequestStatus.VOIDED
        logger.info(
            "Undispatched payment hold voided",
            listing_id=listing.listing_id,
            booking_id=booking_id,
            request_id=hold.request_id
        )
    elif refund.amount > 0:
        refund_request = PaymentRequest(
            kind=PaymentKind.REFUND,
            amount=refund.amount,
            currency=listing.currency,
            booking_id=booking_id,
            payment_reference=booking.payment_intent_id,
            created_at=now
        )
        listing.payment_requests.append(refund_request)
        payments.append(refund_request)

    booking.status = BookingStatus.CANCELLED
    booking.payment_status = PaymentStatus.REFUNDED
    booking.security_deposit_status = DepositStatus.RELEASED
    booking.cancellation_reason = reason
    booking.refund_amount = refund.amount
    listing.updated_at = now

    logger.info(
        "Booking cancelled",
        listing_id=listing.listing_id,
        booking_id=booking_id,
        policy=refund.policy.value,
        days_until_start=refund.days_until_start,
        refund_amount=str(refund.amount),
        reason=sanitize_free_text(reason)
    )

    events = [
        _event(listing, booking.renter_id, NotificationType.RENTAL_CANCELLED, booking, refund_amount=str(refund.amount)),
        _event(listing, listing.seller_id, NotificationType.RENTAL_CANCELLED, booking, refund_amount=str(refund.amount)),
    ]
    return BookingCancelled(
        listing_id=listing.listing_id,
        booking=booking,
        refund=refund,
        payments=payments,
        events=events
    )


def complete_booking(listing: Listing, booking_id: str, now: datetime) -> BookingUpdated:
    """Confirmed -> completed; releases the deposit."""
    rental = listing.require_rental()
    booking = rental.get_booking(booking_id)

    if booking.status != BookingStatus.CONFIRMED:
        raise InvalidState(f"Booking {booking_id} cannot be completed from {booking.status.value}")

    booking.status = BookingStatus.COMPLETED
    booking.security_deposit_status = DepositStatus.RELEASED
    listing.updated_at = now

    logger.info("Booking completed", listing_id=listing.listing_id, booking_id=booking_id)

    return BookingUpdated(
        listing_id=listing.listing_id,
        booking=booking,
        events=[_event(listing, booking.renter_id, NotificationType.RENTAL_COMPLETED, booking)]
    )
