"""
HTTP tests for the Stripe routes: webhook status codes, checkout, linkage, the
customer portal and the development simulator mount
"""

import json

import pytest
from fastapi.testclient import TestClient

from src.config import Config
from src.main import create_app
from src.services.payments import StripeService, get_stripe_service
from src.utils.exceptions import BillingProviderError
from tests.helpers.data_generators import (
    NEXT_PERIOD_END,
    StripeGenerator,
    UserGenerator,
    entitlement_row,
)

TOKEN = "access-token-1"


@pytest.fixture
def user(sb):
    user = UserGenerator.create_user()
    sb.add_auth_users([user])
    sb.add_auth_token(TOKEN, user["id"], user["email"])
    return user


@pytest.fixture
def service(sb, billing):
    return StripeService(billing_provider=billing)


@pytest.fixture
def client(service):
    app = create_app()
    app.dependency_overrides[get_stripe_service] = lambda: service
    return TestClient(app)


def _post_event(client, event, signature="valid"):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["stripe-signature"] = signature
    return client.post("/api/stripe/webhook", content=json.dumps(event), headers=headers)


class TestWebhookEndpoint:
    def test_applied_event_is_acknowledged(self, client, sb, user):
        sb.add_test_data("subscriptions", [entitlement_row(user["id"])])
        event = StripeGenerator.event(
            "customer.subscription.updated",
            StripeGenerator.subscription("sub_default", current_period_end=NEXT_PERIOD_END),
            event_id="evt_route_1",
        )

        response = _post_event(client, event)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["event_id"] == "evt_route_1"
        assert body["outcome"] == "applied"

    def test_unlinked_checkout_is_acknowledged(self, client, sb, billing):
        billing.subscriptions["sub_1"] = StripeGenerator.subscription("sub_1", customer="cus_1")
        session = StripeGenerator.checkout_session(
            subscription="sub_1", client_reference_id="anonymous", email=None
        )

        response = _post_event(client, StripeGenerator.event("checkout.session.completed", session))

        assert response.status_code == 200
        assert response.json()["outcome"] == "unlinked"
        assert sb.rows("subscriptions") == []

    def test_unsupported_event_is_acknowledged(self, client):
        response = _post_event(client, StripeGenerator.event("charge.refunded", {"id": "ch_1"}))

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"

    @pytest.mark.parametrize("signature", ["forged", None])
    def test_bad_signature_is_400(self, client, sb, signature):
        event = StripeGenerator.event("invoice.payment_failed", StripeGenerator.invoice())

        response = _post_event(client, event, signature=signature)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert sb.rows("subscriptions") == []

    def test_malformed_payload_is_400(self, client):
        response = client.post(
            "/api/stripe/webhook", content=b"not json", headers={"stripe-signature": "valid"}
        )

        assert response.status_code == 400

    def test_store_outage_is_503(self, client, sb, user):
        sb.add_test_data("subscriptions", [entitlement_row(user["id"])])
        sb.fail_with = Exception("database unavailable")
        sb.fail_on = {"subscriptions"}
        event = StripeGenerator.event("invoice.payment_failed", StripeGenerator.invoice())

        response = _post_event(client, event)

        assert response.status_code == 503
        assert response.json()["retryable"] is True

    def test_provider_outage_is_503(self, client, billing, user):
        session = StripeGenerator.checkout_session(
            subscription="sub_unknown", client_reference_id=user["id"]
        )

        response = _post_event(client, StripeGenerator.event("checkout.session.completed", session))

        assert response.status_code == 503

    def test_response_carries_request_id(self, client):
        response = client.post(
            "/api/stripe/webhook",
            content=json.dumps(StripeGenerator.event("charge.refunded", {"id": "ch_1"})),
            headers={"stripe-signature": "valid", "X-Request-ID": "req-abc-123"},
        )

        assert response.headers["X-Request-ID"] == "req-abc-123"


class TestCheckoutEndpoint:
    def test_signed_in_checkout(self, client, billing, user, promo_prices):
        response = client.post(
            "/api/stripe/checkout", json={}, headers={"Authorization": f"Bearer {TOKEN}"}
        )

        assert response.status_code == 200
        assert response.json()["session_id"] == "cs_test_1"
        assert billing.checkout_sessions_created[0]["client_reference_id"] == user["id"]

    def test_anonymous_checkout(self, client, billing, promo_prices):
        response = client.post("/api/stripe/checkout", json={"customer_email": "guest@example.com"})

        assert response.status_code == 200
        assert billing.checkout_sessions_created[0]["client_reference_id"] == "anonymous"

    def test_invalid_token_falls_back_to_anonymous(self, client, billing, promo_prices):
        response = client.post(
            "/api/stripe/checkout", json={}, headers={"Authorization": "Bearer expired"}
        )

        assert response.status_code == 200
        assert billing.checkout_sessions_created[0]["client_reference_id"] == "anonymous"

    def test_unconfigured_prices_is_503(self, client, monkeypatch):
        monkeypatch.setattr(Config, "STRIPE_RECURRING_PRICE_ID", None)

        response = client.post("/api/stripe/checkout", json={})

        assert response.status_code == 503


class TestLinkSubscriptionEndpoint:
    def _session(self, billing, **kwargs):
        billing.subscriptions["sub_1"] = StripeGenerator.subscription("sub_1", customer="cus_1")
        session = StripeGenerator.checkout_session(subscription="sub_1", customer="cus_1", **kwargs)
        billing.sessions[session["id"]] = session
        return session

    def _link(self, client, session_id, token=TOKEN):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return client.post(
            "/api/stripe/link-subscription", json={"checkoutSessionId": session_id}, headers=headers
        )

    def test_links_subscription(self, client, sb, billing, user):
        session = self._session(billing, client_reference_id=user["id"])

        response = self._link(client, session["id"])

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["subscription"]["user_id"] == user["id"]
        assert body["subscription"]["billing_subscription_id"] == "sub_1"

    def test_requires_authentication(self, client, billing):
        session = self._session(billing)

        assert self._link(client, session["id"], token=None).status_code == 401
        assert self._link(client, session["id"], token="bogus").status_code == 401

    def test_unknown_session_is_404(self, client, user):
        assert self._link(client, "cs_missing").status_code == 404

    def test_open_session_is_409(self, client, billing, user):
        session = self._session(billing, client_reference_id=user["id"], status="open")

        assert self._link(client, session["id"]).status_code == 409

    def test_foreign_session_is_403(self, client, sb, billing, user):
        other = UserGenerator.create_user()
        sb.add_auth_users([other])
        session = self._session(billing, client_reference_id=other["id"])

        assert self._link(client, session["id"]).status_code == 403

    def test_missing_body_field_is_422(self, client, user):
        response = client.post(
            "/api/stripe/link-subscription", json={}, headers={"Authorization": f"Bearer {TOKEN}"}
        )

        assert response.status_code == 422


class TestCustomerPortalEndpoint:
    def _open(self, client, token=TOKEN):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return client.post("/api/stripe/customer-portal", headers=headers)

    def test_opens_portal_for_billing_customer(self, client, sb, billing, user):
        sb.add_test_data("subscriptions", [entitlement_row(user["id"], billing_customer_id="cus_9")])

        response = self._open(client)

        assert response.status_code == 200
        assert response.json() == {"url": "https://billing.stripe.com/p/session/cus_9"}
        assert billing.portal_sessions_created == [
            {
                "customer": "cus_9",
                "return_url": f"{Config.FRONTEND_URL.rstrip('/')}/dashboard",
            }
        ]

    def test_no_record_is_404(self, client, billing, user):
        assert self._open(client).status_code == 404
        assert billing.portal_sessions_created == []

    def test_record_without_customer_is_404(self, client, sb, billing, user):
        sb.add_test_data(
            "subscriptions",
            [
                entitlement_row(
                    user["id"],
                    billing_customer_id=None,
                    billing_subscription_id=None,
                    status="inactive",
                )
            ],
        )

        assert self._open(client).status_code == 404
        assert billing.portal_sessions_created == []

    def test_requires_authentication(self, client, billing):
        assert self._open(client, token=None).status_code == 401
        assert self._open(client, token="bogus").status_code == 401
        assert billing.portal_sessions_created == []

    def test_stripe_failure_is_503(self, client, sb, billing, user):
        sb.add_test_data("subscriptions", [entitlement_row(user["id"])])
        billing.portal_error = BillingProviderError("Stripe is unavailable")

        assert self._open(client).status_code == 503

    def test_store_outage_is_503(self, client, sb, user):
        sb.fail_with = Exception("database unavailable")
        sb.fail_on = {"subscriptions"}

        assert self._open(client).status_code == 503


class TestDebugRouterMount:
    def test_not_mounted_by_default(self, monkeypatch, service):
        monkeypatch.setattr(Config, "ALLOW_SIMULATED_WEBHOOKS", False)
        app = create_app()

        response = TestClient(app).post("/api/debug/webhook-simulate", json={})

        assert response.status_code == 404

    def test_mounted_when_enabled(self, monkeypatch, sb, service):
        monkeypatch.setattr(Config, "ALLOW_SIMULATED_WEBHOOKS", True)
        monkeypatch.setattr(Config, "IS_PRODUCTION", False)
        user = UserGenerator.create_user()
        sb.add_auth_users([user])
        app = create_app()
        app.dependency_overrides[get_stripe_service] = lambda: service

        response = TestClient(app).post("/api/debug/webhook-simulate", json={"user_id": user["id"]})

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"
        assert sb.rows("subscriptions")[0]["user_id"] == user["id"]

    def test_gate_is_rechecked_per_request(self, monkeypatch, sb, service):
        monkeypatch.setattr(Config, "ALLOW_SIMULATED_WEBHOOKS", True)
        monkeypatch.setattr(Config, "IS_PRODUCTION", False)
        app = create_app()
        app.dependency_overrides[get_stripe_service] = lambda: service
        monkeypatch.setattr(Config, "ALLOW_SIMULATED_WEBHOOKS", False)

        response = TestClient(app).post("/api/debug/webhook-simulate", json={})

        assert response.status_code == 404
