"""
Stripe billing provider.

Thin wrapper over the Stripe SDK exposing only the calls reconciliation and the
checkout/link routes need. SDK failures are translated into the service's
exception types so callers never handle ``stripe.StripeError`` directly.
"""

import logging
from typing import Any

import stripe

from src.config import Config
from src.utils.exceptions import BillingProviderError, WebhookVerificationError
from src.utils.security_validators import sanitize_for_logging

logger = logging.getLogger(__name__)


class StripeBillingProvider:
    """Billing Provider backed by the Stripe API"""

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None):
        self.api_key = api_key or Config.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or Config.STRIPE_WEBHOOK_SECRET

        if not self.api_key:
            raise ValueError("STRIPE_SECRET_KEY not found in environment variables")

        if not self.webhook_secret:
            logger.warning(
                "STRIPE_WEBHOOK_SECRET not configured - webhook signature validation will fail"
            )

        stripe.api_key = self.api_key
        if Config.STRIPE_API_VERSION:
            stripe.api_version = Config.STRIPE_API_VERSION

    # ==================== Webhooks ====================

    def construct_event(self, payload: bytes, signature: str | None) -> stripe.Event:
        """
        Verify a webhook signature and parse the event.

        Raises:
            WebhookVerificationError: missing secret, missing/invalid signature
                or an unparseable payload
        """
        if not self.webhook_secret:
            logger.error("Webhook secret not configured - rejecting webhook")
            raise WebhookVerificationError("Webhook secret not configured")
        if not signature:
            logger.error("Missing webhook signature")
            raise WebhookVerificationError("Missing webhook signature")

        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Invalid webhook signature: {e}")
            raise WebhookVerificationError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise WebhookVerificationError("Invalid webhook payload") from e

    # ==================== Subscriptions ====================

    def retrieve_subscription(self, subscription_id: str) -> stripe.Subscription:
        """Fetch the canonical state of a subscription."""
        try:
            return stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            logger.error(
                f"Error retrieving subscription {sanitize_for_logging(subscription_id)}: {e}"
            )
            raise BillingProviderError(f"Could not retrieve subscription: {e}") from e

    def create_subscription_schedule(
        self, subscription_id: str, idempotency_key: str | None = None
    ) -> stripe.SubscriptionSchedule:
        """Create a schedule that takes over an existing subscription's current phase."""
        params: dict[str, Any] = {"from_subscription": subscription_id}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return stripe.SubscriptionSchedule.create(**params)

    def retrieve_subscription_schedule(self, schedule_id: str) -> stripe.SubscriptionSchedule:
        return stripe.SubscriptionSchedule.retrieve(schedule_id)

    def update_subscription_schedule(
        self,
        schedule_id: str,
        phases: list[dict[str, Any]],
        end_behavior: str = "release",
        metadata: dict[str, str] | None = None,
    ) -> stripe.SubscriptionSchedule:
        params: dict[str, Any] = {"phases": phases, "end_behavior": end_behavior}
        if metadata:
            params["metadata"] = metadata
        return stripe.SubscriptionSchedule.modify(schedule_id, **params)

    # ==================== Checkout Sessions ====================

    def retrieve_checkout_session(self, session_id: str) -> stripe.checkout.Session | None:
        """Fetch a checkout session with its subscription expanded (None if it does not exist)."""
        try:
            return stripe.checkout.Session.retrieve(session_id, expand=["subscription"])
        except stripe.InvalidRequestError as e:
            logger.warning(f"Checkout session {sanitize_for_logging(session_id)} not found: {e}")
            return None
        except stripe.StripeError as e:
            logger.error(
                f"Error retrieving checkout session {sanitize_for_logging(session_id)}: {e}"
            )
            raise BillingProviderError(f"Could not retrieve checkout session: {e}") from e

    def create_checkout_session(self, **params: Any) -> stripe.checkout.Session:
        try:
            return stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session: {e}")
            raise BillingProviderError(f"Could not create checkout session: {e}") from e

    # ==================== Billing Portal ====================

    def create_billing_portal_session(
        self, customer_id: str, return_url: str
    ) -> stripe.billing_portal.Session:
        """Open a customer portal session where the subscriber manages billing."""
        try:
            return stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
        except stripe.StripeError as e:
            logger.error(
                f"Stripe error creating portal session for {sanitize_for_logging(customer_id)}: {e}"
            )
            raise BillingProviderError(f"Could not create billing portal session: {e}") from e
