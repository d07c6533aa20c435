"""Listing persistence with compare-and-swap on Listing.version."""

from typing import Optional, Protocol

from src.models.listing import Listing, ListingStatus, ListingType
from src.services.supabase_client import (
    fetch_listing_row,
    insert_listing_row,
    select_listing_ids,
    update_listing_row_if_version,
)
from src.utils.config import MarketplaceConfig
from src.utils.errors import NotFound, VersionConflict
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class ListingStore(Protocol):
    """Load/save listings by ID. save() fails with VersionConflict when the stored version moved."""

    async def load(self, listing_id: str) -> Listing: ...

    async def create(self, listing: Listing) -> Listing: ...

    async def save(self, listing: Listing, expected_version: int) -> Listing: ...

    async def list_ids(
        self,
        listing_type: Optional[ListingType] = None,
        status: Optional[ListingStatus] = None
    ) -> list[str]: ...


class InMemoryListingStore:
    """Arena of listings keyed by ID. Hands out deep copies so callers never share state."""

    def __init__(self):
        self._listings: dict[str, Listing] = {}

    async def load(self, listing_id: str) -> Listing:
        listing = self._listings.get(listing_id)
        if listing is None:
            raise NotFound(f"Listing not found: {listing_id}")
        return listing.model_copy(deep=True)

    async def create(self, listing: Listing) -> Listing:
        if listing.listing_id in self._listings:
            raise ValueError(f"Listing already exists: {listing.listing_id}")
        self._listings[listing.listing_id] = listing.model_copy(deep=True)
        return listing

    async def save(self, listing: Listing, expected_version: int) -> Listing:
        current = self._listings.get(listing.listing_id)
        if current is None:
            raise NotFound(f"Listing not found: {listing.listing_id}")
        if current.version != expected_version:
            raise VersionConflict(
                f"Listing {listing.listing_id} is at version {current.version}, expected {expected_version}"
            )
        listing.version = expected_version + 1
        self._listings[listing.listing_id] = listing.model_copy(deep=True)
        return listing

    async def list_ids(
        self,
        listing_type: Optional[ListingType] = None,
        status: Optional[ListingStatus] = None
    ) -> list[str]:
        return [
            listing_id
            for listing_id, listing in self._listings.items()
            if (listing_type is None or listing.listing_type == listing_type)
            and (status is None or listing.status == status)
        ]


class SupabaseListingStore:
    """
    Listings table store.

    Columns: listing_id, listing_type, status, seller_id, version and a
    ``data`` JSON column holding the full listing document. The version
    column is the compare-and-swap guard.
    """

    @staticmethod
    def _to_row(listing: Listing, version: int) -> dict:
        data = listing.model_dump(mode="json")
        data["version"] = version
        return {
            "listing_id": listing.listing_id,
            "listing_type": listing.listing_type.value,
            "status": listing.status.value,
            "seller_id": listing.seller_id,
            "version": version,
            "data": data,
        }

    @staticmethod
    def _from_row(row: dict) -> Listing:
        data = dict(row["data"])
        data["version"] = row["version"]
        return Listing.model_validate(data)

    async def load(self, listing_id: str) -> Listing:
        row = await fetch_listing_row(listing_id)
        if row is None:
            raise NotFound(f"Listing not found: {listing_id}")
        return self._from_row(row)

    async def create(self, listing: Listing) -> Listing:
        await insert_listing_row(self._to_row(listing, listing.version))
        logger.info("Listing created", listing_id=listing.listing_id, listing_type=listing.listing_type.value)
        return listing

    async def save(self, listing: Listing, expected_version: int) -> Listing:
        new_version = expected_version + 1
        updated = await update_listing_row_if_version(
            listing.listing_id,
            expected_version,
            self._to_row(listing, new_version)
        )
        if updated is None:
            raise VersionConflict(
                f"Listing {listing.listing_id} changed since version {expected_version}"
            )
        listing.version = new_version
        return listing

    async def list_ids(
        self,
        listing_type: Optional[ListingType] = None,
        status: Optional[ListingStatus] = None
    ) -> list[str]:
        return await select_listing_ids(
            listing_type.value if listing_type else None,
            status.value if status else None
        )


# Global store instance
_listing_store: Optional[ListingStore] = None


def get_listing_store() -> ListingStore:
    """Get or create the configured listing store."""
    global _listing_store
    if _listing_store is None:
        if MarketplaceConfig.LISTING_STORE_BACKEND == "supabase":
            _listing_store = SupabaseListingStore()
        else:
            _listing_store = InMemoryListingStore()
        logger.info("Listing store initialized", backend=MarketplaceConfig.LISTING_STORE_BACKEND)
    return _listing_store
