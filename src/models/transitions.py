"""Transition results returned by the lifecycle state machines.

Each result carries the side effects the transition requested as plain data:
payment requests (already appended to the listing outbox) and notification
events. Callers dispatch them after the listing is persisted.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from src.models.auction import AuctionStatus, Bid
from src.models.notification import DomainEvent
from src.models.payment import PaymentRequest
from src.models.rental import Booking, RefundDecision, RentalPrice


class Transition(BaseModel):
    """Base result: the listing touched and the effects to dispatch."""
    listing_id: str
    events: list[DomainEvent] = Field(default_factory=list)
    payments: list[PaymentRequest] = Field(default_factory=list)


class AuctionUpdated(Transition):
    """Start or cancel."""
    status: AuctionStatus


class AuctionEnded(Transition):
    """Auction concluded. winner_id is None only for an expired auction with no bids."""
    status: AuctionStatus
    winner_id: Optional[str] = None
    amount: Optional[Decimal] = None
    is_buy_now: bool = False


class BidPlaced(Transition):
    """Accepted bid, plus the ending it triggered when it reached the buy-now price."""
    bid: Bid
    current_price: Decimal
    previous_leader_id: Optional[str] = None
    auction_ended: Optional[AuctionEnded] = None


class BookingCreated(Transition):
    booking: Booking
    price: RentalPrice


class BookingUpdated(Transition):
    """Confirm or complete."""
    booking: Booking


class BookingCancelled(Transition):
    booking: Booking
    refund: RefundDecision


class PaymentRecorded(Transition):
    """Dispatch outcome written back to the outbox."""
    request: PaymentRequest
