"""Notification events emitted after successful transitions."""

from enum import Enum
from typing import Any
from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Event types understood by the notification collaborator."""
    AUCTION_BID = "auction_bid"
    AUCTION_ENDED = "auction_ended"
    AUCTION_WON = "auction_won"
    RENTAL_REQUEST = "rental_request"
    RENTAL_CONFIRMED = "rental_confirmed"
    RENTAL_CANCELLED = "rental_cancelled"
    RENTAL_COMPLETED = "rental_completed"
    REFUND_PROCESSED = "refund_processed"
    PAYMENT_FAILED = "payment_failed"


class DomainEvent(BaseModel):
    """A notification to deliver to one user."""
    recipient_id: str = Field(..., description="User to notify")
    event_type: NotificationType
    listing_id: str
    payload: dict[str, Any] = Field(default_factory=dict, description="JSON-safe event data")
