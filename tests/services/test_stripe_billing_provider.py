"""
Tests for the Stripe SDK wrapper
"""

import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest
import stripe

from src.services.stripe_client import StripeBillingProvider
from src.utils.exceptions import BillingProviderError, WebhookVerificationError

SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def provider():
    return StripeBillingProvider(api_key="sk_test_123", webhook_secret=SECRET)


class TestConstructEvent:
    def test_valid_signature(self, provider):
        payload = json.dumps(
            {"id": "evt_1", "object": "event", "type": "invoice.payment_failed", "data": {"object": {}}}
        ).encode()

        event = provider.construct_event(payload, _sign(payload))

        assert event["id"] == "evt_1"
        assert event["type"] == "invoice.payment_failed"

    def test_wrong_secret(self, provider):
        payload = b'{"id": "evt_1", "object": "event"}'

        with pytest.raises(WebhookVerificationError, match="signature"):
            provider.construct_event(payload, _sign(payload, secret="whsec_other"))

    def test_missing_signature(self, provider):
        with pytest.raises(WebhookVerificationError, match="Missing"):
            provider.construct_event(b"{}", None)

    def test_missing_secret_rejects_everything(self, monkeypatch):
        from src.config import Config

        monkeypatch.setattr(Config, "STRIPE_WEBHOOK_SECRET", None)
        provider = StripeBillingProvider(api_key="sk_test_123")
        payload = b"{}"

        with pytest.raises(WebhookVerificationError):
            provider.construct_event(payload, _sign(payload))


def test_requires_api_key(monkeypatch):
    from src.config import Config

    monkeypatch.setattr(Config, "STRIPE_SECRET_KEY", None)

    with pytest.raises(ValueError):
        StripeBillingProvider()


class TestSdkCalls:
    def test_retrieve_subscription_failure(self, provider):
        with patch("stripe.Subscription.retrieve", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(BillingProviderError):
                provider.retrieve_subscription("sub_1")

    def test_schedule_creation_carries_idempotency_key(self, provider):
        with patch("stripe.SubscriptionSchedule.create") as create:
            provider.create_subscription_schedule("sub_1", idempotency_key="promo-schedule-sub_1")

        create.assert_called_once_with(
            from_subscription="sub_1", idempotency_key="promo-schedule-sub_1"
        )

    def test_schedule_update(self, provider):
        phases = [{"items": [{"price": "price_a", "quantity": 1}], "iterations": 1}]

        with patch("stripe.SubscriptionSchedule.modify") as modify:
            provider.update_subscription_schedule(
                "sub_sched_1", phases, metadata={"schedule_type": "promotional"}
            )

        modify.assert_called_once_with(
            "sub_sched_1",
            phases=phases,
            end_behavior="release",
            metadata={"schedule_type": "promotional"},
        )

    def test_unknown_checkout_session(self, provider):
        error = stripe.InvalidRequestError("No such checkout.session", param="id")

        with patch("stripe.checkout.Session.retrieve", side_effect=error):
            assert provider.retrieve_checkout_session("cs_missing") is None

    def test_checkout_session_outage(self, provider):
        with patch("stripe.checkout.Session.retrieve", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(BillingProviderError):
                provider.retrieve_checkout_session("cs_1")

    def test_checkout_session_expands_subscription(self, provider):
        with patch("stripe.checkout.Session.retrieve") as retrieve:
            provider.retrieve_checkout_session("cs_1")

        retrieve.assert_called_once_with("cs_1", expand=["subscription"])


class TestBillingPortal:
    def test_creates_portal_session(self, provider):
        with patch("stripe.billing_portal.Session.create") as create:
            create.return_value = {"url": "https://billing.stripe.com/p/session/test"}
            session = provider.create_billing_portal_session(
                "cus_1", return_url="https://app.doggit.test/dashboard"
            )

        create.assert_called_once_with(
            customer="cus_1", return_url="https://app.doggit.test/dashboard"
        )
        assert session["url"] == "https://billing.stripe.com/p/session/test"

    def test_portal_failure(self, provider):
        with patch(
            "stripe.billing_portal.Session.create", side_effect=stripe.APIConnectionError("down")
        ):
            with pytest.raises(BillingProviderError):
                provider.create_billing_portal_session("cus_1", return_url="https://x/dashboard")


def test_retrieve_subscription_schedule(provider):
    with patch("stripe.SubscriptionSchedule.retrieve") as retrieve:
        provider.retrieve_subscription_schedule("sub_sched_1")

    retrieve.assert_called_once_with("sub_sched_1")
