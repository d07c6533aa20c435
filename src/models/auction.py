"""Auction models - details embedded in an auction listing."""

from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from pydantic import AwareDatetime, BaseModel, Field


class AuctionStatus(str, Enum):
    """Auction lifecycle states."""
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"
    SOLD = "sold"


class Bid(BaseModel):
    """Accepted bid. Bids are append-only; list order is chronological."""
    bidder_id: str = Field(..., description="Bidder user ID (reference only)")
    amount: Decimal = Field(..., gt=0, description="Bid amount")
    timestamp: AwareDatetime = Field(..., description="When the bid was accepted")
    is_buy_now: bool = Field(default=False, description="Bid met or exceeded the buy-now price")


class AuctionDetails(BaseModel):
    """Auction details owned by a listing with listing_type=auction."""
    start_price: Decimal = Field(..., ge=0, description="Opening price")
    current_price: Optional[Decimal] = Field(
        None,
        description="Highest accepted bid, or start_price when there are no bids"
    )
    minimum_bid_increment: Decimal = Field(default=Decimal("1"), gt=0, description="Minimum raise over current price")
    buy_now_price: Optional[Decimal] = Field(None, description="Immediate purchase price, must exceed start_price")
    start_time: AwareDatetime = Field(..., description="Scheduled start")
    end_time: AwareDatetime = Field(..., description="Bids after this instant are rejected")
    status: AuctionStatus = Field(default=AuctionStatus.PENDING, description="Lifecycle state")
    bids: list[Bid] = Field(default_factory=list, description="Accepted bids in insertion order")
    winner_id: Optional[str] = Field(None, description="Winning user ID, set on ended/sold")

    def model_post_init(self, __context: Any) -> None:
        """Validate the time window and buy-now price, default current_price."""
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if self.buy_now_price is not None and self.buy_now_price <= self.start_price:
            raise ValueError("buy_now_price must be higher than start_price")
        if self.current_price is None:
            self.current_price = self.start_price


class AuctionStatusView(BaseModel):
    """Read-only projection of an auction at a given instant."""
    listing_id: str
    status: AuctionStatus
    current_price: Decimal
    buy_now_price: Optional[Decimal] = None
    time_left: timedelta
    is_active: bool
    bids: list[Bid] = Field(default_factory=list)
    winner_id: Optional[str] = None
