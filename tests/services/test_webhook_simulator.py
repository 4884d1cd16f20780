"""
Tests for the development webhook simulator
"""

import pytest

from src.config import Config
from src.schemas.billing_events import EventKind, ReconciliationOutcome
from src.schemas.payments import SimulateWebhookRequest
from src.services.payments import StripeService
from src.services.simulation import SimulationDisabledError, WebhookSimulator
from tests.helpers.data_generators import UserGenerator


@pytest.fixture
def simulation_enabled(monkeypatch):
    monkeypatch.setattr(Config, "ALLOW_SIMULATED_WEBHOOKS", True)
    monkeypatch.setattr(Config, "IS_PRODUCTION", False)


@pytest.fixture
def service(sb, billing):
    return StripeService(billing_provider=billing)


class TestSimulationGate:
    def test_disabled_by_default(self, monkeypatch, service):
        monkeypatch.setattr(Config, "ALLOW_SIMULATED_WEBHOOKS", False)

        with pytest.raises(SimulationDisabledError):
            WebhookSimulator(service)

    def test_never_enabled_in_production(self, monkeypatch, service):
        monkeypatch.setattr(Config, "ALLOW_SIMULATED_WEBHOOKS", True)
        monkeypatch.setattr(Config, "IS_PRODUCTION", True)

        assert Config.simulated_webhooks_enabled() is False
        with pytest.raises(SimulationDisabledError):
            WebhookSimulator(service)


class TestSimulatedCheckout:
    def test_built_event_is_marked_simulated(self, simulation_enabled, service):
        event = WebhookSimulator(service).build_checkout_completed(
            SimulateWebhookRequest(user_id="u1", email="dev@example.com")
        )

        assert event.simulated is True
        assert event.kind == EventKind.CHECKOUT_COMPLETED
        assert event.payload["client_reference_id"] == "u1"
        assert event.payload["metadata"]["schedule_type"] == "promotional"
        assert event.payload["subscription"].startswith("sub_sim_")

    def test_anonymous_request_uses_placeholder(self, simulation_enabled, service):
        event = WebhookSimulator(service).build_checkout_completed(
            SimulateWebhookRequest(promotional=False)
        )

        assert event.payload["client_reference_id"] == "anonymous_test"
        assert "schedule_type" not in event.payload["metadata"]

    def test_simulated_checkout_grants_access_without_provider_calls(
        self, simulation_enabled, service, sb, billing
    ):
        user = UserGenerator.create_user()
        sb.add_auth_users([user])

        result = WebhookSimulator(service).simulate_checkout_completed(
            SimulateWebhookRequest(user_id=user["id"])
        )

        assert result.outcome == ReconciliationOutcome.APPLIED
        assert billing.retrieved_subscriptions == []
        assert billing.schedules_created == []
        assert service.get_subscription_status(user["id"]).has_subscription is True

        audit = sb.rows("stripe_webhook_events")
        assert audit[0]["metadata"]["simulated"] is True

    def test_simulated_anonymous_checkout_links_by_email(self, simulation_enabled, service, sb):
        user = UserGenerator.create_user(email="dev@example.com")
        sb.add_auth_users([user])

        result = WebhookSimulator(service).simulate_checkout_completed(
            SimulateWebhookRequest(email="dev@example.com")
        )

        assert result.outcome == ReconciliationOutcome.APPLIED
        assert sb.rows("subscriptions")[0]["user_id"] == user["id"]
