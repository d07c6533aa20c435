"""Tests for the marketplace engine."""

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

from src.models.auction import AuctionStatus
from src.models.listing import ListingStatus
from src.models.notification import NotificationType
from src.models.payment import PaymentKind, PaymentRequestStatus
from src.models.rental import BookingStatus
from src.services.marketplace_engine import MarketplaceEngine
from src.utils.errors import (
    BidTooLow,
    InvalidState,
    NoBuyNowPrice,
    NotRentalListing,
    PaymentFailed,
    Unavailable,
    VersionConflict,
)
from tests.utils.assertions import assert_current_price_is_max_bid, assert_single_payment, payments_of_kind
from tests.utils.factories import (
    T0,
    create_active_auction,
    create_auction_listing,
    create_rental_listing,
    days,
)
from tests.utils.helpers import ConflictingListingStore, make_payment_gateway


def _notified(notifier, event_type: NotificationType) -> list[str]:
    """Recipients the notifier was called with for one event type."""
    return [c.args[0] for c in notifier.notify.await_args_list if c.args[1] == event_type.value]


# Auctions

@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_and_bid(engine, listing_store):
    listing = await engine.create_listing(create_auction_listing())

    await engine.start_auction(listing.listing_id)
    result = await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))

    stored = await listing_store.load(listing.listing_id)
    assert result.current_price == Decimal("110")
    assert stored.auction_details.status == AuctionStatus.ACTIVE
    assert stored.version == 2
    assert_current_price_is_max_bid(stored)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_listing_stamps_created_at(engine, fixed_clock):
    listing = await engine.create_listing(create_active_auction())

    assert (await engine.get_listing(listing.listing_id)).created_at == fixed_clock.now()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rejected_bid_changes_nothing(engine, listing_store):
    listing = await engine.create_listing(create_active_auction())

    with pytest.raises(BidTooLow):
        await engine.place_bid(listing.listing_id, "bidder_a", Decimal("105"))

    stored = await listing_store.load(listing.listing_id)
    assert stored.version == 0
    assert stored.auction_details.bids == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_listing_locks_do_not_accumulate(engine):
    listings = [await engine.create_listing(create_active_auction()) for _ in range(3)]

    for listing in listings:
        await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))
    with pytest.raises(BidTooLow):
        await engine.place_bid(listings[0].listing_id, "bidder_b", Decimal("105"))

    assert engine._locks == {}
    assert engine._lock_users == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_outbid_bidder_is_notified(engine, notifier):
    listing = await engine.create_listing(create_active_auction())

    await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))
    await engine.place_bid(listing.listing_id, "bidder_b", Decimal("120"))

    assert _notified(notifier, NotificationType.AUCTION_BID) == ["bidder_a"]
    payload = notifier.notify.await_args_list[-1].args[2]
    assert payload["listing_id"] == listing.listing_id


@pytest.mark.unit
@pytest.mark.asyncio
async def test_buy_now_charges_and_records_reference(engine, payment_gateway, notifier, listing_store):
    listing = await engine.create_listing(create_active_auction(buy_now_price=Decimal("500")))

    result = await engine.buy_now(listing.listing_id, "buyer_1")

    assert result.status == AuctionStatus.SOLD
    payment_gateway.request_charge.assert_awaited_once_with(Decimal("500"), "usd")
    stored = await listing_store.load(listing.listing_id)
    charge = assert_single_payment(stored, PaymentKind.CHARGE, Decimal("500"), PaymentRequestStatus.SENT)
    assert charge.provider_reference == "pi_test_1"
    assert stored.status == ListingStatus.SOLD
    assert _notified(notifier, NotificationType.AUCTION_WON) == ["buyer_1"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_bid_at_buy_now_price_ends_auction(engine, payment_gateway):
    listing = await engine.create_listing(create_active_auction(buy_now_price=Decimal("500")))

    result = await engine.place_bid(listing.listing_id, "bidder_a", Decimal("500"))

    assert result.auction_ended is not None
    assert result.auction_ended.winner_id == "bidder_a"
    payment_gateway.request_charge.assert_awaited_once_with(Decimal("500"), "usd")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_auction_dispatches_charge(engine, payment_gateway, notifier):
    listing = await engine.create_listing(create_active_auction())
    await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))
    await engine.place_bid(listing.listing_id, "bidder_b", Decimal("180"))

    result = await engine.end_auction(listing.listing_id)

    assert result.winner_id == "bidder_b"
    payment_gateway.request_charge.assert_awaited_once_with(Decimal("180"), "usd")
    assert _notified(notifier, NotificationType.AUCTION_ENDED) == [listing.seller_id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_buy_now_ending_without_buy_now_price_is_rejected(engine, payment_gateway, listing_store):
    listing = await engine.create_listing(create_active_auction())
    await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))

    with pytest.raises(NoBuyNowPrice):
        await engine.end_auction(listing.listing_id, winner_id="bidder_a", is_buy_now=True)

    stored = await listing_store.load(listing.listing_id)
    assert stored.version == 1
    assert stored.auction_details.status == AuctionStatus.ACTIVE
    assert stored.status == ListingStatus.ACTIVE
    payment_gateway.request_charge.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_payment_failure_keeps_transition(engine, payment_gateway, notifier, listing_store):
    """Test a declined charge leaves the auction sold with a retryable outbox entry."""
    payment_gateway.request_charge = AsyncMock(side_effect=RuntimeError("card declined"))
    listing = await engine.create_listing(create_active_auction(buy_now_price=Decimal("500")))

    with pytest.raises(PaymentFailed) as exc_info:
        await engine.buy_now(listing.listing_id, "buyer_1")

    assert exc_info.value.result.winner_id == "buyer_1"
    stored = await listing_store.load(listing.listing_id)
    assert stored.auction_details.status == AuctionStatus.SOLD
    charge = assert_single_payment(stored, PaymentKind.CHARGE, Decimal("500"), PaymentRequestStatus.FAILED)
    assert "card declined" in charge.error
    assert _notified(notifier, NotificationType.PAYMENT_FAILED) == ["buyer_1"]

    payment_gateway.request_charge = AsyncMock(return_value="pi_retry")
    retried = await engine.retry_payments(listing.listing_id)

    charge = assert_single_payment(retried, PaymentKind.CHARGE, Decimal("500"), PaymentRequestStatus.SENT)
    assert charge.provider_reference == "pi_retry"
    assert charge.attempts == 2
    assert retried.pending_payments() == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_payments_with_nothing_pending(engine, payment_gateway):
    listing = await engine.create_listing(create_active_auction())

    await engine.retry_payments(listing.listing_id)

    payment_gateway.request_charge.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notifier_failure_is_not_fatal(engine, notifier, listing_store):
    notifier.notify = AsyncMock(side_effect=RuntimeError("smtp down"))
    listing = await engine.create_listing(create_active_auction())
    await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))

    result = await engine.place_bid(listing.listing_id, "bidder_b", Decimal("120"))

    assert result.current_price == Decimal("120")
    assert (await listing_store.load(listing.listing_id)).auction_details.current_price == Decimal("120")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_auction_status_uses_clock(engine, fixed_clock):
    listing = await engine.create_listing(create_active_auction(end_time=T0 + timedelta(hours=2)))

    view = await engine.get_auction_status(listing.listing_id)
    assert view.is_active is True
    assert view.time_left == timedelta(hours=2)

    fixed_clock.advance(timedelta(hours=3))
    view = await engine.get_auction_status(listing.listing_id)
    assert view.is_active is False
    assert view.time_left == timedelta(0)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_auction(engine):
    listing = await engine.create_listing(create_active_auction())

    result = await engine.cancel_auction(listing.listing_id)

    assert result.status == AuctionStatus.CANCELLED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sweep_closes_expired_auctions(engine, fixed_clock, listing_store, payment_gateway):
    with_bids = await engine.create_listing(create_active_auction(end_time=T0 + timedelta(hours=1)))
    without_bids = await engine.create_listing(create_active_auction(end_time=T0 + timedelta(hours=1)))
    still_running = await engine.create_listing(create_active_auction(end_time=T0 + days(5)))
    await engine.place_bid(with_bids.listing_id, "bidder_a", Decimal("130"))

    fixed_clock.advance(timedelta(hours=2))
    closed = await engine.sweep_expired_auctions()

    assert {c.listing_id for c in closed} == {with_bids.listing_id, without_bids.listing_id}
    assert (await listing_store.load(with_bids.listing_id)).status == ListingStatus.SOLD
    assert (await listing_store.load(without_bids.listing_id)).status == ListingStatus.INACTIVE
    running = await listing_store.load(still_running.listing_id)
    assert running.auction_details.status == AuctionStatus.ACTIVE
    payment_gateway.request_charge.assert_awaited_once_with(Decimal("130"), "usd")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sweep_continues_after_payment_failure(engine, fixed_clock, payment_gateway):
    payment_gateway.request_charge = AsyncMock(side_effect=RuntimeError("gateway down"))
    first = await engine.create_listing(create_active_auction(end_time=T0 + timedelta(hours=1)))
    second = await engine.create_listing(create_active_auction(end_time=T0 + timedelta(hours=1)))
    await engine.place_bid(first.listing_id, "bidder_a", Decimal("130"))
    await engine.place_bid(second.listing_id, "bidder_b", Decimal("140"))

    fixed_clock.advance(timedelta(hours=2))
    closed = await engine.sweep_expired_auctions()

    assert len(closed) == 2
    assert payment_gateway.request_charge.await_count == 2


# Concurrency control

@pytest.mark.unit
@pytest.mark.asyncio
async def test_version_conflict_is_retried(payment_gateway, notifier, fixed_clock):
    store = ConflictingListingStore(conflicts=1)
    engine = MarketplaceEngine(store, payment_gateway, notifier, fixed_clock, max_retries=3)
    listing = await engine.create_listing(create_active_auction())

    result = await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))

    assert result.current_price == Decimal("110")
    assert store.save_calls == 2
    stored = await store.load(listing.listing_id)
    assert len(stored.auction_details.bids) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_version_conflict_gives_up(payment_gateway, notifier, fixed_clock):
    store = ConflictingListingStore(conflicts=5)
    engine = MarketplaceEngine(store, payment_gateway, notifier, fixed_clock, max_retries=2)
    listing = await engine.create_listing(create_active_auction())

    with pytest.raises(VersionConflict):
        await engine.place_bid(listing.listing_id, "bidder_a", Decimal("110"))

    assert store.save_calls == 3
    stored = await store.load(listing.listing_id)
    assert stored.auction_details.bids == []


# Rentals

@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_availability_quote(engine):
    listing = await engine.create_listing(create_rental_listing())

    quote = await engine.check_availability(listing.listing_id, T0 + days(10), T0 + days(20))

    assert quote.is_available is True
    assert quote.total_price == Decimal("160")
    assert quote.security_deposit == Decimal("50")

    await engine.create_booking(listing.listing_id, "renter_1", T0 + days(10), T0 + days(20))
    quote = await engine.check_availability(listing.listing_id, T0 + days(15), T0 + days(16))
    assert quote.is_available is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_availability_on_auction_raises(engine):
    listing = await engine.create_listing(create_active_auction())

    with pytest.raises(NotRentalListing):
        await engine.check_availability(listing.listing_id, T0 + days(1), T0 + days(2))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_booking_hold_dispatched(engine, payment_gateway, listing_store, notifier):
    listing = await engine.create_listing(create_rental_listing())

    result = await engine.create_booking(listing.listing_id, "renter_1", T0 + days(10), T0 + days(20))

    payment_gateway.request_charge.assert_awaited_once_with(Decimal("210"), "usd")
    stored = await listing_store.load(listing.listing_id)
    booking = stored.rental_details.get_booking(result.booking.booking_id)
    assert booking.payment_intent_id == "pi_test_1"
    assert _notified(notifier, NotificationType.RENTAL_REQUEST) == [listing.seller_id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_conflicting_booking_rejected(engine):
    listing = await engine.create_listing(create_rental_listing())
    await engine.create_booking(listing.listing_id, "renter_1", T0 + days(10), T0 + days(20))

    with pytest.raises(Unavailable):
        await engine.create_booking(listing.listing_id, "renter_2", T0 + days(19), T0 + days(22))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_booking_dispatches_refund(engine, payment_gateway, notifier, listing_store):
    """Test cancelling 10 days out under moderate policy refunds the full charge once."""
    listing = await engine.create_listing(create_rental_listing())
    created = await engine.create_booking(listing.listing_id, "renter_1", T0 + days(10), T0 + days(20))
    booking_id = created.booking.booking_id
    await engine.confirm_booking(listing.listing_id, booking_id)

    result = await engine.cancel_booking(listing.listing_id, booking_id, reason="Trip cancelled")

    assert result.refund.amount == Decimal("160")
    payment_gateway.request_refund.assert_awaited_once_with("pi_test_1", Decimal("160.00"))
    assert _notified(notifier, NotificationType.REFUND_PROCESSED) == ["renter_1"]

    with pytest.raises(InvalidState):
        await engine.cancel_booking(listing.listing_id, booking_id)
    payment_gateway.request_refund.assert_awaited_once()

    stored = await listing_store.load(listing.listing_id)
    assert stored.rental_details.get_booking(booking_id).status == BookingStatus.CANCELLED
    assert len(payments_of_kind(stored, PaymentKind.REFUND)) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_after_failed_hold_voids_it(engine, payment_gateway, listing_store):
    payment_gateway.request_charge = AsyncMock(side_effect=RuntimeError("declined"))
    listing = await engine.create_listing(create_rental_listing())

    with pytest.raises(PaymentFailed) as exc_info:
        await engine.create_booking(listing.listing_id, "renter_1", T0 + days(10), T0 + days(12))
    booking_id = exc_info.value.result.booking.booking_id

    await engine.cancel_booking(listing.listing_id, booking_id)

    stored = await listing_store.load(listing.listing_id)
    hold = payments_of_kind(stored, PaymentKind.HOLD)[0]
    assert hold.status == PaymentRequestStatus.VOIDED
    assert stored.pending_payments() == []
    payment_gateway.request_refund.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_complete_booking(engine, fixed_clock):
    listing = await engine.create_listing(create_rental_listing())
    created = await engine.create_booking(listing.listing_id, "renter_1", T0 + days(1), T0 + days(3))
    await engine.confirm_booking(listing.listing_id, created.booking.booking_id)

    fixed_clock.advance(days(3))
    result = await engine.complete_booking(listing.listing_id, created.booking.booking_id)

    assert result.booking.status == BookingStatus.COMPLETED


@pytest.mark.unit
def test_engine_defaults():
    engine = MarketplaceEngine(store=AsyncMock(), payments=make_payment_gateway())

    assert engine.max_retries == 3
    assert engine.clock.now().tzinfo is not None
