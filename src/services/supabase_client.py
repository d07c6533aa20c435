"""Supabase client wrapper with async context manager support."""

import os
from typing import Optional
from supabase import create_client, Client
from supabase.client import ClientOptions
from src.utils.config import MarketplaceConfig
from src.utils.errors import SupabaseError
import logging

logger = logging.getLogger(__name__)

# Global client instance (singleton pattern)
_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton."""
    global _client

    if _client is None:
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

        if not url or not key:
            raise SupabaseError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = create_client(url, key, options)
        logger.info("Supabase client initialized", extra={"url": url})

    return _client


async def close_supabase_client() -> None:
    """Drop the cached client so the next call rebuilds it."""
    global _client
    if _client:
        _client = None
        logger.info("Supabase client closed")


class SupabaseClient:
    """Async context manager for Supabase client."""

    def __init__(self):
        self.client: Optional[Client] = None

    async def __aenter__(self) -> Client:
        self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "Supabase operation error",
                extra={"error": str(exc_val), "type": exc_type.__name__}
            )
        return False


# Listings table operations
async def fetch_listing_row(listing_id: str) -> Optional[dict]:
    """Get a listing row by ID."""
    async with SupabaseClient() as client:
        try:
            result = client.table(MarketplaceConfig.LISTINGS_TABLE).select("*").eq("listing_id", listing_id).execute()
            return result.data[0] if result.data and len(result.data) > 0 else None
        except Exception as e:
            raise SupabaseError(f"Failed to get listing: {e}")


async def insert_listing_row(row: dict) -> dict:
    """Insert a new listing row."""
    async with SupabaseClient() as client:
        try:
            result = client.table(MarketplaceConfig.LISTINGS_TABLE).insert(row).execute()
            if result.data and len(result.data) > 0:
                return result.data[0]
            raise SupabaseError("Failed to create listing: no data returned")
        except SupabaseError:
            raise
        except Exception as e:
            raise SupabaseError(f"Failed to create listing: {e}")


async def update_listing_row_if_version(listing_id: str, expected_version: int, row: dict) -> Optional[dict]:
    """
    Compare-and-swap update of a listing row.

    Only matches the row while its version column still equals
    expected_version. Returns the updated row, or None when nothing matched.
    """
    async with SupabaseClient() as client:
        try:
            result = (
                client.table(MarketplaceConfig.LISTINGS_TABLE)
                .update(row)
                .eq("listing_id", listing_id)
                .eq("version", expected_version)
                .execute()
            )
            return result.data[0] if result.data and len(result.data) > 0 else None
        except Exception as e:
            raise SupabaseError(f"Failed to update listing: {e}")


async def select_listing_ids(listing_type: Optional[str] = None, status: Optional[str] = None) -> list[str]:
    """List listing IDs, optionally filtered by type and listing status."""
    async with SupabaseClient() as client:
        try:
            query = client.table(MarketplaceConfig.LISTINGS_TABLE).select("listing_id")
            if listing_type:
                query = query.eq("listing_type", listing_type)
            if status:
                query = query.eq("status", status)
            result = query.execute()
            return [row["listing_id"] for row in (result.data or [])]
        except Exception as e:
            raise SupabaseError(f"Failed to list listings: {e}")


# Notifications table operations
async def insert_notification(notification: dict) -> None:
    """Insert a notification row for the delivery workers to pick up."""
    async with SupabaseClient() as client:
        try:
            client.table(MarketplaceConfig.NOTIFICATIONS_TABLE).insert(notification).execute()
        except Exception as e:
            raise SupabaseError(f"Failed to insert notification: {e}")
