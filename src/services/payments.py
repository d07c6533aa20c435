"""Payment collaborator contract and outbox bookkeeping.

Payment requests are written to the listing outbox by the lifecycle
transitions. After the listing is saved they are sent through a
PaymentGateway and the outcome is written back with mark_payment_sent or
mark_payment_failed. Sending is at-least-once: a failed or unacknowledged
request stays dispatchable and can be retried without replaying the
transition that created it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from src.models.auction import AuctionDetails
from src.models.listing import Listing
from src.models.notification import DomainEvent, NotificationType
from src.models.payment import PaymentKind, PaymentRequest, PaymentRequestStatus
from src.models.transitions import PaymentRecorded
from src.utils.errors import PaymentFailed
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class PaymentGateway(Protocol):
    """Narrow interface onto the payment provider."""

    async def request_charge(self, amount: Decimal, currency: str) -> str:
        """Create a charge (or hold) and return the provider's payment reference."""
        ...

    async def request_refund(self, payment_reference: str, amount: Decimal) -> str:
        """Refund part or all of a payment and return the refund reference."""
        ...


async def send_payment_request(gateway: PaymentGateway, request: PaymentRequest) -> str:
    """Send one outbox entry. Any gateway error surfaces as PaymentFailed."""
    if request.kind == PaymentKind.REFUND and not request.payment_reference:
        raise PaymentFailed(
            f"Refund {request.request_id} has no payment reference to refund against",
            request_id=request.request_id
        )

    try:
        if request.kind == PaymentKind.REFUND:
            return await gateway.request_refund(request.payment_reference, request.amount)
        return await gateway.request_charge(request.amount, request.currency)
    except PaymentFailed:
        raise
    except Exception as e:
        raise PaymentFailed(
            f"{request.kind.value} of {request.amount} {request.currency} failed: {e}",
            request_id=request.request_id
        ) from e


def _payer_id(listing: Listing, request: PaymentRequest) -> Optional[str]:
    """User the payment belongs to: the renter for bookings, the winner for auction charges."""
    if request.booking_id and listing.rental_details is not None:
        booking = listing.rental_details.bookings.get(request.booking_id)
        return booking.renter_id if booking else None
    auction: Optional[AuctionDetails] = listing.auction_details
    return auction.winner_id if auction else None


def mark_payment_sent(listing: Listing, request_id: str, provider_reference: str, now: datetime) -> PaymentRecorded:
    """
    Record a provider acknowledgement.

    A hold stores its reference on the booking. A hold that was voided by a
    cancellation while it was in flight gets a compensating refund of the
    booking's policy refund amount.
    """
    request = listing.get_payment_request(request_id)
    if request.status == PaymentRequestStatus.SENT:
        logger.info("Payment already recorded as sent", listing_id=listing.listing_id, request_id=request_id)
        return PaymentRecorded(listing_id=listing.listing_id, request=request)

    was_voided = request.status == PaymentRequestStatus.VOIDED
    request.status = PaymentRequestStatus.SENT
    request.provider_reference = provider_reference
    request.error = None
    request.attempts += 1
    listing.updated_at = now

    payments = []
    events = []
    booking = None
    if request.booking_id and listing.rental_details is not None:
        booking = listing.rental_details.bookings.get(request.booking_id)

    if request.kind == PaymentKind.HOLD and booking is not None:
        booking.payment_intent_id = provider_reference
        if was_voided and booking.refund_amount:
            compensation = PaymentRequest(
                kind=PaymentKind.REFUND,
                amount=booking.refund_amount,
                currency=request.currency,
                booking_id=booking.booking_id,
                payment_reference=provider_reference,
                created_at=now
            )
            listing.payment_requests.append(compensation)
            payments.append(compensation)
            logger.warning(
                "Hold acknowledged after cancellation, refund queued",
                listing_id=listing.listing_id,
                booking_id=booking.booking_id,
                refund_amount=str(compensation.amount)
            )

    if request.kind == PaymentKind.REFUND:
        recipient = _payer_id(listing, request)
        if recipient:
            events.append(DomainEvent(
                recipient_id=recipient,
                event_type=NotificationType.REFUND_PROCESSED,
                listing_id=listing.listing_id,
                payload={
                    "booking_id": request.booking_id,
                    "amount": str(request.amount),
                    "currency": request.currency,
                }
            ))

    logger.info(
        "Payment request sent",
        listing_id=listing.listing_id,
        request_id=request_id,
        kind=request.kind.value,
        amount=str(request.amount)
    )
    return PaymentRecorded(listing_id=listing.listing_id, request=request, payments=payments, events=events)


def mark_payment_failed(listing: Listing, request_id: str, error: str, now: datetime) -> PaymentRecorded:
    """Record a failed attempt. The entry stays dispatchable for a later retry."""
    request = listing.get_payment_request(request_id)
    if request.status == PaymentRequestStatus.SENT:
        return PaymentRecorded(listing_id=listing.listing_id, request=request)

    if request.status != PaymentRequestStatus.VOIDED:
        request.status = PaymentRequestStatus.FAILED
    request.error = error
    request.attempts += 1
    listing.updated_at = now

    logger.warning(
        "Payment request failed",
        listing_id=listing.listing_id,
        request_id=request_id,
        kind=request.kind.value,
        attempts=request.attempts,
        error=error
    )

    events = []
    recipient = _payer_id(listing, request)
    if recipient:
        events.append(DomainEvent(
            recipient_id=recipient,
            event_type=NotificationType.PAYMENT_FAILED,
            listing_id=listing.listing_id,
            payload={"kind": request.kind.value, "amount": str(request.amount), "currency": request.currency}
        ))
    return PaymentRecorded(listing_id=listing.listing_id, request=request, events=events)
