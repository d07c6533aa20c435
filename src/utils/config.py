"""Engine configuration read from environment variables."""

import os


class MarketplaceConfig:
    """Centralized engine configuration."""

    DEFAULT_CURRENCY = os.environ.get("MARKETPLACE_CURRENCY", "usd").lower()
    VERSION_CONFLICT_MAX_RETRIES = int(os.environ.get("VERSION_CONFLICT_MAX_RETRIES", "3"))
    LISTING_STORE_BACKEND = os.environ.get("LISTING_STORE_BACKEND", "memory").lower()
    LISTINGS_TABLE = os.environ.get("LISTINGS_TABLE", "listings")
    NOTIFICATIONS_TABLE = os.environ.get("NOTIFICATIONS_TABLE", "notifications")
