"""Marketplace engine - runs lifecycle transitions atomically per listing.

Every mutating operation is a read-modify-write of a single listing:
load it, apply a lifecycle function with the clock's current instant, and
save it with a version check. Operations on the same listing are
serialized by an asyncio lock, and the version check catches writers in
other processes (the transition is re-applied to a fresh copy on conflict).
Payment requests and notifications recorded by the transition are
dispatched after the lock is released.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from src.models.auction import AuctionStatus, AuctionStatusView
from src.models.listing import Listing, ListingStatus, ListingType
from src.models.notification import DomainEvent
from src.models.payment import PaymentRequest
from src.models.rental import RentalQuote
from src.models.transitions import (
    AuctionEnded,
    AuctionUpdated,
    BidPlaced,
    BookingCancelled,
    BookingCreated,
    BookingUpdated,
    Transition,
)
from src.services import auction_lifecycle, booking_lifecycle
from src.services.availability import is_available
from src.services.listing_store import ListingStore
from src.services.notifier import LoggingNotifier, Notifier
from src.services.payments import (
    PaymentGateway,
    mark_payment_failed,
    mark_payment_sent,
    send_payment_request,
)
from src.services.pricing import price_for
from src.utils.clock import Clock, SystemClock
from src.utils.config import MarketplaceConfig
from src.utils.errors import MarketplaceError, PaymentFailed, VersionConflict
from src.utils.logging import (
    correlation_context,
    get_structured_logger,
    log_timing,
    mask_user_id,
    timed,
)

logger = get_structured_logger(__name__)

T = TypeVar("T", bound=Transition)


class MarketplaceEngine:
    """Entry point for auction and rental operations."""

    def __init__(
        self,
        store: ListingStore,
        payments: PaymentGateway,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        max_retries: Optional[int] = None
    ):
        self.store = store
        self.payments = payments
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or SystemClock()
        self.max_retries = MarketplaceConfig.VERSION_CONFLICT_MAX_RETRIES if max_retries is None else max_retries
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # Core read-modify-write

    @asynccontextmanager
    async def _listing_lock(self, listing_id: str):
        """Hold the lock of one listing. The lock is dropped once nobody holds or awaits it."""
        lock = self._locks.get(listing_id)
        if lock is None:
            lock = self._locks[listing_id] = asyncio.Lock()
        self._lock_users[listing_id] = self._lock_users.get(listing_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[listing_id] -= 1
            if self._lock_users[listing_id] == 0:
                del self._lock_users[listing_id]
                del self._locks[listing_id]

    async def _apply(self, listing_id: str, operation: str, transition: Callable[[Listing, datetime], T]) -> T:
        """Apply a transition under the listing lock, retrying on version conflicts."""
        conflicts = 0
        while True:
            async with self._listing_lock(listing_id):
                listing = await self.store.load(listing_id)
                expected_version = listing.version
                result = transition(listing, self.clock.now())
                try:
                    await self.store.save(listing, expected_version)
                    return result
                except VersionConflict:
                    conflicts += 1
                    if conflicts > self.max_retries:
                        logger.error(
                            "Giving up after repeated version conflicts",
                            listing_id=listing_id,
                            operation=operation,
                            conflicts=conflicts
                        )
                        raise
                    logger.warning(
                        "Version conflict, re-applying transition",
                        listing_id=listing_id,
                        operation=operation,
                        attempt=conflicts
                    )

    async def _run(self, listing_id: str, operation: str, transition: Callable[[Listing, datetime], T]) -> T:
        """Apply a transition, then dispatch its notifications and payments."""
        with correlation_context(), log_timing(operation, logger=logger, listing_id=listing_id):
            try:
                result = await self._apply(listing_id, operation, transition)
            except MarketplaceError as e:
                logger.info(
                    "Operation rejected",
                    listing_id=listing_id,
                    operation=operation,
                    error_type=type(e).__name__,
                    error=str(e)
                )
                raise

            await self._emit(result.events)
            await self._dispatch_payments(listing_id, result.payments, result)
            return result

    async def _emit(self, events: list[DomainEvent]) -> None:
        """Hand events to the notifier. Delivery failures are logged, never raised."""
        for event in events:
            payload = dict(event.payload)
            payload["listing_id"] = event.listing_id
            try:
                await self.notifier.notify(event.recipient_id, event.event_type.value, payload)
            except Exception as e:
                logger.warning(
                    "Failed to emit notification (non-fatal)",
                    listing_id=event.listing_id,
                    recipient_id=mask_user_id(event.recipient_id),
                    event_type=event.event_type.value,
                    error=str(e)
                )

    async def _dispatch_payments(
        self,
        listing_id: str,
        requests: list[PaymentRequest],
        result: Optional[Transition] = None
    ) -> None:
        """
        Send payment requests and write each outcome back to the outbox.

        Follow-up requests produced while recording (compensating refunds)
        are sent in the same pass. Raises PaymentFailed after every request
        has been attempted if any of them failed.
        """
        queue = list(requests)
        failures: list[PaymentFailed] = []

        while queue:
            request = queue.pop(0)
            request_id = request.request_id
            try:
                reference = await send_payment_request(self.payments, request)
            except PaymentFailed as e:
                error = str(e)
                recorded = await self._apply(
                    listing_id,
                    "record_payment_failure",
                    lambda listing, now: mark_payment_failed(listing, request_id, error, now)
                )
                await self._emit(recorded.events)
                failures.append(e)
                continue

            recorded = await self._apply(
                listing_id,
                "record_payment",
                lambda listing, now: mark_payment_sent(listing, request_id, reference, now)
            )
            await self._emit(recorded.events)
            queue.extend(recorded.payments)

        if failures:
            first = failures[0]
            raise PaymentFailed(str(first), request_id=first.request_id, result=result)

    # Listings

    async def create_listing(self, listing: Listing) -> Listing:
        if listing.created_at is None:
            listing.created_at = self.clock.now()
        created = await self.store.create(listing)
        logger.info(
            "Listing registered",
            listing_id=listing.listing_id,
            listing_type=listing.listing_type.value,
            seller_id=mask_user_id(listing.seller_id)
        )
        return created

    async def get_listing(self, listing_id: str) -> Listing:
        return await self.store.load(listing_id)

    async def retry_payments(self, listing_id: str) -> Listing:
        """Re-send every pending or failed outbox entry of a listing."""
        with correlation_context():
            listing = await self.store.load(listing_id)
            pending = listing.pending_payments()
            if pending:
                logger.info("Retrying payment requests", listing_id=listing_id, count=len(pending))
                await self._dispatch_payments(listing_id, pending)
            return await self.store.load(listing_id)

    # Auctions

    async def start_auction(self, listing_id: str) -> AuctionUpdated:
        return await self._run(listing_id, "start_auction", auction_lifecycle.start_auction)

    async def place_bid(self, listing_id: str, bidder_id: str, amount: Decimal) -> BidPlaced:
        return await self._run(
            listing_id,
            "place_bid",
            lambda listing, now: auction_lifecycle.place_bid(listing, bidder_id, amount, now)
        )

    async def buy_now(self, listing_id: str, buyer_id: str) -> AuctionEnded:
        return await self._run(
            listing_id,
            "buy_now",
            lambda listing, now: auction_lifecycle.buy_now(listing, buyer_id, now)
        )

    async def end_auction(
        self,
        listing_id: str,
        winner_id: Optional[str] = None,
        is_buy_now: bool = False
    ) -> AuctionEnded:
        return await self._run(
            listing_id,
            "end_auction",
            lambda listing, now: auction_lifecycle.end_auction(listing, now, winner_id, is_buy_now)
        )

    async def cancel_auction(self, listing_id: str) -> AuctionUpdated:
        return await self._run(listing_id, "cancel_auction", auction_lifecycle.cancel_auction)

    async def get_auction_status(self, listing_id: str) -> AuctionStatusView:
        listing = await self.store.load(listing_id)
        return auction_lifecycle.get_auction_status(listing, self.clock.now())

    @timed("sweep_expired_auctions")
    async def sweep_expired_auctions(self) -> list[AuctionEnded]:
        """
        Close every active auction past its end time.

        Each listing is handled independently; one failing auction is logged
        and does not stop the sweep.
        """
        now = self.clock.now()
        closed: list[AuctionEnded] = []
        failed = 0

        for listing_id in await self.store.list_ids(ListingType.AUCTION, ListingStatus.ACTIVE):
            listing = await self.store.load(listing_id)
            auction = listing.auction_details
            if auction.status != AuctionStatus.ACTIVE or auction.end_time >= now:
                continue
            try:
                closed.append(await self._run(listing_id, "close_expired_auction", auction_lifecycle.close_expired_auction))
            except PaymentFailed as e:
                failed += 1
                logger.warning("Expired auction closed but payment failed", listing_id=listing_id, error=str(e))
                if isinstance(e.result, AuctionEnded):
                    closed.append(e.result)
            except MarketplaceError as e:
                failed += 1
                logger.warning(
                    "Could not close expired auction",
                    listing_id=listing_id,
                    error_type=type(e).__name__,
                    error=str(e)
                )

        logger.info("Expired auction sweep finished", closed=len(closed), failed=failed)
        return closed

    # Rentals

    async def check_availability(self, listing_id: str, start_date: datetime, end_date: datetime) -> RentalQuote:
        """Answer "is it available and at what price" for a date range."""
        listing = await self.store.load(listing_id)
        rental = listing.require_rental()
        price = price_for(rental, start_date, end_date)
        return RentalQuote(
            is_available=is_available(rental, start_date, end_date),
            total_price=price.total_price,
            days=price.days,
            weeks=price.weeks,
            remaining_days=price.remaining_days,
            security_deposit=rental.security_deposit
        )

    async def create_booking(
        self,
        listing_id: str,
        renter_id: str,
        start_date: datetime,
        end_date: datetime
    ) -> BookingCreated:
        return await self._run(
            listing_id,
            "create_booking",
            lambda listing, now: booking_lifecycle.create_booking(listing, renter_id, start_date, end_date, now)
        )

    async def confirm_booking(self, listing_id: str, booking_id: str) -> BookingUpdated:
        return await self._run(
            listing_id,
            "confirm_booking",
            lambda listing, now: booking_lifecycle.confirm_booking(listing, booking_id, now)
        )

    async def cancel_booking(self, listing_id: str, booking_id: str, reason: Optional[str] = None) -> BookingCancelled:
        return await self._run(
            listing_id,
            "cancel_booking",
            lambda listing, now: booking_lifecycle.cancel_booking(listing, booking_id, now, reason)
        )

    async def complete_booking(self, listing_id: str, booking_id: str) -> BookingUpdated:
        return await self._run(
            listing_id,
            "complete_booking",
            lambda listing, now: booking_lifecycle.complete_booking(listing, booking_id, now)
        )
