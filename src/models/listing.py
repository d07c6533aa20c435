"""Listing model - the unit of persistence and concurrency control."""

from enum import Enum
from typing import Any, Optional
from pydantic import AwareDatetime, BaseModel, Field

from src.models.auction import AuctionDetails
from src.models.payment import PaymentRequest
from src.models.rental import RentalDetails
from src.utils.config import MarketplaceConfig
from src.utils.errors import NotAuctionListing, NotFound, NotRentalListing


class ListingType(str, Enum):
    """Listing type values."""
    SALE = "sale"
    RENT = "rent"
    AUCTION = "auction"


class ListingStatus(str, Enum):
    """Listing status values."""
    ACTIVE = "active"
    SOLD = "sold"
    RENTED = "rented"
    INACTIVE = "inactive"


class Listing(BaseModel):
    """Marketplace listing owning either auction or rental details, never both."""
    listing_id: str = Field(..., description="Listing ID (text)")
    seller_id: str = Field(..., description="Seller user ID")
    title: Optional[str] = Field(None, description="Listing title")
    listing_type: ListingType = Field(..., frozen=True, description="sale, rent or auction; immutable")
    status: ListingStatus = Field(default=ListingStatus.ACTIVE, description="Listing status")
    currency: str = Field(
        default_factory=lambda: MarketplaceConfig.DEFAULT_CURRENCY,
        description="Currency for charges, holds and refunds"
    )
    auction_details: Optional[AuctionDetails] = None
    rental_details: Optional[RentalDetails] = None
    payment_requests: list[PaymentRequest] = Field(default_factory=list, description="Payment outbox")
    version: int = Field(default=0, ge=0, description="Incremented on every save")
    created_at: Optional[AwareDatetime] = None
    updated_at: Optional[AwareDatetime] = None

    def model_post_init(self, __context: Any) -> None:
        """Validate that the detail block matches listing_type."""
        has_auction = self.auction_details is not None
        has_rental = self.rental_details is not None

        if self.listing_type == ListingType.AUCTION:
            if not has_auction or has_rental:
                raise ValueError("auction listings require auction_details and no rental_details")
        elif self.listing_type == ListingType.RENT:
            if not has_rental or has_auction:
                raise ValueError("rental listings require rental_details and no auction_details")
        elif has_auction or has_rental:
            raise ValueError("sale listings carry neither auction_details nor rental_details")

    def require_auction(self) -> AuctionDetails:
        if self.listing_type != ListingType.AUCTION:
            raise NotAuctionListing(f"Listing {self.listing_id} is not an auction")
        return self.auction_details

    def require_rental(self) -> RentalDetails:
        if self.listing_type != ListingType.RENT:
            raise NotRentalListing(f"Listing {self.listing_id} is not a rental")
        return self.rental_details

    def get_payment_request(self, request_id: str) -> PaymentRequest:
        for request in self.payment_requests:
            if request.request_id == request_id:
                return request
        raise NotFound(f"Payment request not found: {request_id}")

    def pending_payments(self) -> list[PaymentRequest]:
        """Outbox entries not yet acknowledged by the payment collaborator."""
        return [r for r in self.payment_requests if r.dispatchable]
