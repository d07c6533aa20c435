"""Auction lifecycle - start, bid, buy-now, end, cancel and status projection.

Like the booking lifecycle, these functions mutate the listing they are
given and return explicit results instead of performing side effects. A bid
that reaches the buy-now price ends the auction in the same call; the ending
shows up as ``BidPlaced.auction_ended``.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from src.models.auction import AuctionDetails, AuctionStatus, AuctionStatusView, Bid
from src.models.listing import Listing, ListingStatus
from src.models.notification import DomainEvent, NotificationType
from src.models.payment import PaymentKind, PaymentRequest
from src.models.transitions import AuctionEnded, AuctionUpdated, BidPlaced
from src.utils.errors import (
    AuctionExpired,
    AuctionNotActive,
    BidTooLow,
    InvalidState,
    NoBids,
    NoBuyNowPrice,
)
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

FINISHED = (AuctionStatus.ENDED, AuctionStatus.SOLD)


def select_winning_bid(bids: list[Bid]) -> Optional[Bid]:
    """
    Highest bid, earliest first on ties.

    Bids are scanned in insertion order and only a strictly greater amount
    replaces the leader.
    """
    leader = None
    for bid in bids:
        if leader is None or bid.amount > leader.amount:
            leader = bid
    return leader


def minimum_next_bid(auction: AuctionDetails) -> Decimal:
    return auction.current_price + auction.minimum_bid_increment


def _require_active(listing: Listing, auction: AuctionDetails) -> None:
    if auction.status != AuctionStatus.ACTIVE:
        raise AuctionNotActive(
            f"Auction {listing.listing_id} is not active (status={auction.status.value})"
        )


def start_auction(listing: Listing, now: datetime) -> AuctionUpdated:
    """Pending -> active; resets current_price to start_price."""
    auction = listing.require_auction()
    if auction.status != AuctionStatus.PENDING:
        raise InvalidState(f"Auction {listing.listing_id} cannot be started from {auction.status.value}")

    auction.status = AuctionStatus.ACTIVE
    auction.current_price = auction.start_price
    listing.updated_at = now

    logger.info(
        "Auction started",
        listing_id=listing.listing_id,
        start_price=str(auction.start_price),
        end_time=auction.end_time.isoformat()
    )
    return AuctionUpdated(listing_id=listing.listing_id, status=auction.status)


def place_bid(listing: Listing, bidder_id: str, amount: Decimal, now: datetime) -> BidPlaced:
    """
    Admit a bid.

    Checks, in order: the end time (AuctionExpired, even while the status
    is still active), the amount (BidTooLow), then the state
    (AuctionNotActive).
    """
    auction = listing.require_auction()
    amount = Decimal(amount)

    if now > auction.end_time:
        raise AuctionExpired(f"Auction {listing.listing_id} ended at {auction.end_time.isoformat()}")

    minimum = minimum_next_bid(auction)
    if amount <= auction.current_price or amount < minimum:
        logger.info(
            "Bid rejected, too low",
            listing_id=listing.listing_id,
            bidder_id=mask_user_id(bidder_id),
            amount=str(amount),
            minimum_bid=str(minimum)
        )
        raise BidTooLow(f"Bid must be at least {minimum}", minimum_bid=minimum)

    _require_active(listing, auction)

    previous = select_winning_bid(auction.bids)
    reaches_buy_now = auction.buy_now_price is not None and amount >= auction.buy_now_price

    bid = Bid(bidder_id=bidder_id, amount=amount, timestamp=now, is_buy_now=reaches_buy_now)
    auction.bids.append(bid)
    auction.current_price = amount
    listing.updated_at = now

    logger.info(
        "Bid accepted",
        listing_id=listing.listing_id,
        bidder_id=mask_user_id(bidder_id),
        amount=str(amount),
        bid_count=len(auction.bids),
        reaches_buy_now=reaches_buy_now
    )

    events = []
    previous_leader_id = previous.bidder_id if previous else None
    if previous_leader_id and previous_leader_id != bidder_id:
        events.append(DomainEvent(
            recipient_id=previous_leader_id,
            event_type=NotificationType.AUCTION_BID,
            listing_id=listing.listing_id,
            payload={"outbid": True, "new_price": str(amount)}
        ))

    ended = None
    payments = []
    if reaches_buy_now:
        ended = end_auction(listing, now, winner_id=bidder_id, is_buy_now=True)
        events.extend(ended.events)
        payments.extend(ended.payments)

    return BidPlaced(
        listing_id=listing.listing_id,
        bid=bid,
        current_price=auction.current_price,
        previous_leader_id=previous_leader_id,
        auction_ended=ended,
        events=events,
        payments=payments
    )


def buy_now(listing: Listing, buyer_id: str, now: datetime) -> AuctionEnded:
    """Purchase at the buy-now price, ending the auction with the buyer as winner."""
    auction = listing.require_auction()
    if auction.buy_now_price is None:
        raise NoBuyNowPrice(f"Auction {listing.listing_id} has no buy-now price")
    _require_active(listing, auction)

    auction.bids.append(Bid(
        bidder_id=buyer_id,
        amount=auction.buy_now_price,
        timestamp=now,
        is_buy_now=True
    ))
    logger.info(
        "Buy-now requested",
        listing_id=listing.listing_id,
        buyer_id=mask_user_id(buyer_id),
        amount=str(auction.buy_now_price)
    )
    return end_auction(listing, now, winner_id=buyer_id, is_buy_now=True)


def end_auction(
    listing: Listing,
    now: datetime,
    winner_id: Optional[str] = None,
    is_buy_now: bool = False
) -> AuctionEnded:
    """
    Conclude an active auction and record the charge for the winner.

    Without an explicit winner the highest bidder wins. Raises
    NoBuyNowPrice for a buy-now ending on an auction without a buy-now
    price and NoBids when there is nobody to charge. Buy-now endings move
    the auction to sold, others to ended; the listing is marked sold either
    way.
    """
    auction = listing.require_auction()
    _require_active(listing, auction)

    if is_buy_now and auction.buy_now_price is None:
        raise NoBuyNowPrice(f"Auction {listing.listing_id} has no buy-now price")

    if winner_id is None:
        leader = select_winning_bid(auction.bids)
        if leader is None:
            raise NoBids(f"Auction {listing.listing_id} has no bids")
        winner_id = leader.bidder_id

    amount = auction.buy_now_price if is_buy_now else auction.current_price
    charge = PaymentRequest(
        kind=PaymentKind.CHARGE,
        amount=amount,
        currency=listing.currency,
        created_at=now
    )

    # All checks pass before the listing is touched
    auction.status = AuctionStatus.SOLD if is_buy_now else AuctionStatus.ENDED
    auction.winner_id = winner_id
    listing.status = ListingStatus.SOLD
    listing.updated_at = now
    listing.payment_requests.append(charge)

    logger.info(
        "Auction ended",
        listing_id=listing.listing_id,
        winner_id=mask_user_id(winner_id),
        amount=str(amount),
        is_buy_now=is_buy_now,
        status=auction.status.value
    )

    payload = {"winner_id": winner_id, "amount": str(amount), "is_buy_now": is_buy_now}
    events = [
        DomainEvent(
            recipient_id=listing.seller_id,
            event_type=NotificationType.AUCTION_ENDED,
            listing_id=listing.listing_id,
            payload=payload
        ),
        DomainEvent(
            recipient_id=winner_id,
            event_type=NotificationType.AUCTION_WON,
            listing_id=listing.listing_id,
            payload=payload
        ),
    ]

    return AuctionEnded(
        listing_id=listing.listing_id,
        status=auction.status,
        winner_id=winner_id,
        amount=amount,
        is_buy_now=is_buy_now,
        events=events,
        payments=[charge]
    )


def expire_auction(listing: Listing, now: datetime) -> AuctionEnded:
    """Close an active auction that ran out of time without a single bid."""
    auction = listing.require_auction()
    _require_active(listing, auction)
    if now <= auction.end_time:
        raise InvalidState(f"Auction {listing.listing_id} has not reached its end time")
    if auction.bids:
        raise InvalidState(f"Auction {listing.listing_id} has bids and must be ended, not expired")

    auction.status = AuctionStatus.ENDED
    listing.status = ListingStatus.INACTIVE
    listing.updated_at = now

    logger.info("Auction expired without bids", listing_id=listing.listing_id)

    return AuctionEnded(
        listing_id=listing.listing_id,
        status=auction.status,
        events=[DomainEvent(
            recipient_id=listing.seller_id,
            event_type=NotificationType.AUCTION_ENDED,
            listing_id=listing.listing_id,
            payload={"winner_id": None, "amount": None, "is_buy_now": False}
        )]
    )


def close_expired_auction(listing: Listing, now: datetime) -> AuctionEnded:
    """End an active auction past its end time: highest bidder wins, or expire it if nobody bid."""
    auction = listing.require_auction()
    _require_active(listing, auction)
    if now <= auction.end_time:
        raise InvalidState(f"Auction {listing.listing_id} has not reached its end time")
    if auction.bids:
        return end_auction(listing, now)
    return expire_auction(listing, now)


def cancel_auction(listing: Listing, now: datetime) -> AuctionUpdated:
    """Cancel an auction that has not ended or sold."""
    auction = listing.require_auction()
    if auction.status in FINISHED:
        raise InvalidState(f"Cannot cancel {auction.status.value} auction {listing.listing_id}")

    auction.status = AuctionStatus.CANCELLED
    listing.updated_at = now

    logger.info("Auction cancelled", listing_id=listing.listing_id, bid_count=len(auction.bids))
    return AuctionUpdated(listing_id=listing.listing_id, status=auction.status)


def get_auction_status(listing: Listing, now: datetime) -> AuctionStatusView:
    """Project the auction at `now` without mutating it."""
    auction = listing.require_auction()
    time_left = max(auction.end_time - now, timedelta(0))
    return AuctionStatusView(
        listing_id=listing.listing_id,
        status=auction.status,
        current_price=auction.current_price,
        buy_now_price=auction.buy_now_price,
        time_left=time_left,
        is_active=auction.status == AuctionStatus.ACTIVE and time_left > timedelta(0),
        bids=list(auction.bids),
        winner_id=auction.winner_id
    )
