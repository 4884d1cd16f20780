"""
Test Data Generators using Faker

Provides Stripe-shaped payloads (subscriptions, checkout sessions, invoices,
events) and identity-store users for tests.

Usage:
    from tests.helpers.data_generators import StripeGenerator, UserGenerator

    user = UserGenerator.create_user()
    subscription = StripeGenerator.subscription(customer="cus_123")
    event = StripeGenerator.event("customer.subscription.updated", subscription)
"""

import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from faker import Faker

fake = Faker()

# 2025-01-01T00:00:00Z and one month later
PERIOD_START = 1735689600
PERIOD_END = 1738368000
NEXT_PERIOD_END = 1740787200

FIRST_PRICE = "price_promo_first"
RECURRING_PRICE = "price_recurring"


def iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class UserGenerator:
    """Generate identity store users"""

    @staticmethod
    def create_user(user_id: Optional[str] = None, email: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        user_data = {
            "id": user_id or str(uuid.uuid4()),
            "email": (email or fake.email()).lower(),
            "first_name": fake.first_name(),
            "last_name": fake.last_name(),
            "pup_name": fake.first_name(),
        }
        user_data.update(kwargs)
        return user_data


class StripeGenerator:
    """Generate Stripe-shaped objects as plain dicts (the webhook wire format)"""

    @staticmethod
    def subscription(
        subscription_id: Optional[str] = None,
        customer: Optional[str] = "cus_default",
        status: str = "active",
        price_id: str = FIRST_PRICE,
        interval: str = "month",
        current_period_start: Optional[int] = PERIOD_START,
        current_period_end: Optional[int] = PERIOD_END,
        periods_on_item: bool = False,
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Args:
            periods_on_item: put the period bounds on the first item instead of the
                subscription, as newer Stripe API versions do
        """
        item = {
            "id": f"si_{secrets.token_hex(6)}",
            "price": {"id": price_id, "recurring": {"interval": interval}},
        }
        subscription = {
            "id": subscription_id or f"sub_{secrets.token_hex(8)}",
            "object": "subscription",
            "customer": customer,
            "status": status,
            "cancel_at_period_end": False,
            "canceled_at": None,
            "trial_start": None,
            "trial_end": None,
            "schedule": None,
            "metadata": {},
            "items": {"object": "list", "data": [item]},
        }
        if periods_on_item:
            item["current_period_start"] = current_period_start
            item["current_period_end"] = current_period_end
        else:
            subscription["current_period_start"] = current_period_start
            subscription["current_period_end"] = current_period_end
        subscription.update(kwargs)
        return subscription

    @staticmethod
    def checkout_session(
        subscription: Any = None,
        client_reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        email: Optional[str] = None,
        customer: Optional[str] = "cus_default",
        status: str = "complete",
        promotional: bool = True,
        **kwargs,
    ) -> Dict[str, Any]:
        session_metadata = {}
        if promotional:
            session_metadata.update(
                {
                    "schedule_type": "promotional",
                    "first_price": FIRST_PRICE,
                    "recurring_price": RECURRING_PRICE,
                }
            )
        session_metadata.update(metadata or {})
        session = {
            "id": f"cs_test_{secrets.token_hex(8)}",
            "object": "checkout.session",
            "mode": "subscription" if subscription else "payment",
            "status": status,
            "client_reference_id": client_reference_id,
            "customer": customer,
            "customer_email": None,
            "customer_details": {"email": email},
            "subscription": subscription,
            "metadata": session_metadata,
        }
        session.update(kwargs)
        return session

    @staticmethod
    def invoice(customer: Optional[str] = "cus_default", subscription: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": f"in_{secrets.token_hex(8)}",
            "object": "invoice",
            "customer": customer,
            "subscription": subscription,
            "status": "open",
            "attempt_count": 1,
        }

    @staticmethod
    def event(event_type: str, obj: Dict[str, Any], event_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": event_id or f"evt_{secrets.token_hex(12)}",
            "object": "event",
            "type": event_type,
            "created": PERIOD_START,
            "livemode": False,
            "data": {"object": obj},
        }


def entitlement_row(user_id: str, **overrides) -> Dict[str, Any]:
    """A stored subscriptions-table row (timestamps as Postgres returns them)."""
    row = {
        "user_id": user_id,
        "billing_customer_id": "cus_default",
        "billing_subscription_id": "sub_default",
        "price_id": FIRST_PRICE,
        "billing_interval": "month",
        "status": "active",
        "current_period_start": iso(PERIOD_START),
        "current_period_end": iso(PERIOD_END),
        "cancel_at_period_end": False,
        "canceled_at": None,
        "trial_start": None,
        "trial_end": None,
        "is_promotional": True,
        "created_at": iso(PERIOD_START),
        "updated_at": iso(PERIOD_START),
    }
    row.update(overrides)
    return row
