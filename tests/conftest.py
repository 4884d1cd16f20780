import os

import pytest

os.environ.setdefault("APP_ENV", "testing")

from src.config import supabase_config  # noqa: E402
from src.config.config import Config  # noqa: E402
from tests.helpers.mocks import FakeBillingProvider, MockSupabaseClient  # noqa: E402


@pytest.fixture
def sb(monkeypatch):
    """In-memory Supabase client wired into every db module."""
    client = MockSupabaseClient()
    monkeypatch.setattr(supabase_config, "get_supabase_client", lambda: client)
    return client


@pytest.fixture
def billing():
    return FakeBillingProvider()


@pytest.fixture
def promo_prices(monkeypatch):
    monkeypatch.setattr(Config, "STRIPE_PROMO_FIRST_PRICE_ID", "price_promo_first")
    monkeypatch.setattr(Config, "STRIPE_RECURRING_PRICE_ID", "price_recurring")
