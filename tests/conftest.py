"""Shared pytest fixtures and configuration."""

import os
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from freezegun import freeze_time

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LISTING_STORE_BACKEND", "memory")
os.environ.setdefault("MARKETPLACE_CURRENCY", "usd")
os.environ.setdefault("LOG_FORMAT", "text")

from src.services.listing_store import InMemoryListingStore
from src.services.marketplace_engine import MarketplaceEngine
from src.utils.clock import FixedClock
from tests.utils.factories import T0
from tests.utils.helpers import make_payment_gateway


@pytest.fixture
def now():
    """Reference instant used across lifecycle tests."""
    return T0


@pytest.fixture
def fixed_clock():
    """Clock pinned to the reference instant."""
    return FixedClock(T0)


@pytest.fixture
def listing_store():
    """Empty in-memory listing store."""
    return InMemoryListingStore()


@pytest.fixture
def payment_gateway():
    """Payment gateway mock that acknowledges every request."""
    return make_payment_gateway()


@pytest.fixture
def notifier():
    """Notifier mock."""
    notifier = AsyncMock()
    notifier.notify = AsyncMock(return_value=None)
    return notifier


@pytest.fixture
def engine(listing_store, payment_gateway, notifier, fixed_clock):
    """Engine wired to in-memory collaborators and a fixed clock."""
    return MarketplaceEngine(
        store=listing_store,
        payments=payment_gateway,
        notifier=notifier,
        clock=fixed_clock,
        max_retries=3
    )


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client returned by the singleton getter."""
    client = MagicMock()
    with patch("src.services.supabase_client.get_supabase_client", return_value=client):
        yield client


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time

