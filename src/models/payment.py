"""Payment outbox entries recorded on a listing alongside the transition that caused them."""

from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import AwareDatetime, BaseModel, Field

from src.utils.ids import generate_payment_request_id


class PaymentKind(str, Enum):
    """What the payment collaborator is asked to do."""
    HOLD = "hold"
    CHARGE = "charge"
    REFUND = "refund"


class PaymentRequestStatus(str, Enum):
    """Dispatch state of an outbox entry."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    VOIDED = "voided"


class PaymentRequest(BaseModel):
    """Intent to charge, hold or refund, dispatched after the listing is saved."""
    request_id: str = Field(default_factory=generate_payment_request_id)
    kind: PaymentKind
    amount: Decimal = Field(..., ge=0)
    currency: str
    booking_id: Optional[str] = Field(None, description="Booking the hold/refund belongs to")
    payment_reference: Optional[str] = Field(None, description="Provider reference a refund is issued against")
    status: PaymentRequestStatus = Field(default=PaymentRequestStatus.PENDING)
    provider_reference: Optional[str] = Field(None, description="Reference returned by the provider")
    error: Optional[str] = None
    attempts: int = Field(default=0, ge=0)
    created_at: AwareDatetime

    @property
    def dispatchable(self) -> bool:
        return self.status in (PaymentRequestStatus.PENDING, PaymentRequestStatus.FAILED)
