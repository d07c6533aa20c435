"""Error taxonomy for the auction and rental engine."""

from typing import Any, Optional


class MarketplaceError(Exception):
    """Base exception for the marketplace engine."""
    pass


class NotFound(MarketplaceError):
    """Listing or booking is absent."""
    pass


class WrongListingType(MarketplaceError):
    """Operation applied to a listing of the wrong listing_type."""
    pass


class NotRentalListing(WrongListingType):
    """Rental operation on a listing that is not a rental."""
    pass


class NotAuctionListing(WrongListingType):
    """Auction operation on a listing that is not an auction."""
    pass


class InvalidState(MarketplaceError):
    """Transition is not legal from the current state."""
    pass


class AuctionNotActive(InvalidState):
    """Auction is not in the active state."""
    pass


class BidTooLow(MarketplaceError):
    """Bid does not clear the current price plus the minimum increment."""

    def __init__(self, message: str, minimum_bid: Optional[Any] = None):
        super().__init__(message)
        self.minimum_bid = minimum_bid


class AuctionExpired(MarketplaceError):
    """Bid placed after the auction end time."""
    pass


class NoBuyNowPrice(MarketplaceError):
    """Buy-now requested on an auction without a buy-now price."""
    pass


class NoBids(MarketplaceError):
    """Auction ended normally with an empty bid list."""
    pass


class Unavailable(MarketplaceError):
    """Requested rental dates conflict with bookings or blackouts."""
    pass


class InvalidRange(MarketplaceError):
    """Date range is empty, reversed or shorter than allowed."""
    pass


class PaymentFailed(MarketplaceError):
    """Payment collaborator rejected a request.

    The state transition that recorded the request stays committed;
    ``result`` holds the transition outcome for the caller.
    """

    def __init__(self, message: str, request_id: Optional[str] = None, result: Optional[Any] = None):
        super().__init__(message)
        self.request_id = request_id
        self.result = result


class VersionConflict(MarketplaceError):
    """Listing changed since it was loaded (compare-and-swap lost)."""
    pass


class SupabaseError(MarketplaceError):
    """Supabase operation error."""
    pass
