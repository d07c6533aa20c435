"""Test helper functions."""

import asyncio
from itertools import count
from unittest.mock import AsyncMock

from src.models.listing import Listing
from src.services.listing_store import InMemoryListingStore


def make_payment_gateway(charge_prefix: str = "pi_test", refund_prefix: str = "re_test") -> AsyncMock:
    """Gateway mock returning a fresh provider reference per call."""
    charges = count(1)
    refunds = count(1)
    gateway = AsyncMock()
    gateway.request_charge = AsyncMock(side_effect=lambda amount, currency: f"{charge_prefix}_{next(charges)}")
    gateway.request_refund = AsyncMock(side_effect=lambda reference, amount: f"{refund_prefix}_{next(refunds)}")
    return gateway


class YieldingListingStore(InMemoryListingStore):
    """In-memory store that yields to the event loop on every call."""

    async def load(self, listing_id: str) -> Listing:
        await asyncio.sleep(0)
        return await super().load(listing_id)

    async def save(self, listing: Listing, expected_version: int) -> Listing:
        await asyncio.sleep(0)
        return await super().save(listing, expected_version)


class ConflictingListingStore(InMemoryListingStore):
    """In-memory store whose first ``conflicts`` saves lose a race to another writer."""

    def __init__(self, conflicts: int = 1):
        super().__init__()
        self.conflicts = conflicts
        self.save_calls = 0

    async def save(self, listing: Listing, expected_version: int) -> Listing:
        self.save_calls += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            stored = await super().load(listing.listing_id)
            # Another writer bumps the stored version first
            await super().save(stored, stored.version)
        return await super().save(listing, expected_version)
