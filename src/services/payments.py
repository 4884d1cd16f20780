#!/usr/bin/env python3
"""
Stripe Service
Entry point for everything billing: webhooks, checkout, linkage and status.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from src.config import Config
from src.constants import (
    ANONYMOUS_REFERENCE,
    CHECKOUT_CANCEL_PATH,
    CHECKOUT_SUCCESS_PATH,
    PORTAL_RETURN_PATH,
    METADATA_FIRST_PRICE,
    METADATA_RECURRING_PRICE,
    METADATA_SCHEDULE_TYPE,
    METADATA_USER_ID,
    SCHEDULE_TYPE_PROMOTIONAL,
)
from src.db import entitlements as entitlements_db
from src.db import webhook_events as webhook_events_db
from src.schemas.billing_events import EventKind, InboundEvent
from src.schemas.entitlements import EntitlementStatus
from src.schemas.payments import (
    CheckoutSessionResponse,
    CreateCheckoutSessionRequest,
    LinkSubscriptionResponse,
    PortalSessionResponse,
    SubscriptionStatusResponse,
    WebhookProcessingResult,
)
from src.services.reconciliation import ReconciliationEngine
from src.services.stripe_client import StripeBillingProvider
from src.utils.exceptions import ReconciliationError, WebhookVerificationError
from src.utils.sentry_context import capture_payment_error
from src.utils.stripe_objects import get_object_id, get_stripe_object_value, metadata_to_dict

logger = logging.getLogger(__name__)


def to_inbound_event(event: Any, *, simulated: bool = False) -> InboundEvent:
    """
    Reduce a verified Stripe event to an InboundEvent.

    Raises:
        WebhookVerificationError: the envelope lacks an id, a type or ``data.object``
    """
    event_id = get_stripe_object_value(event, "id")
    event_type = get_stripe_object_value(event, "type")
    data = get_stripe_object_value(event, "data")
    obj = get_stripe_object_value(data, "object") if data is not None else None

    if not event_id or not event_type or obj is None:
        raise WebhookVerificationError("Malformed event envelope")

    payload = dict(obj) if isinstance(obj, dict) else metadata_to_dict(obj)
    return InboundEvent(
        id=event_id,
        type=event_type,
        kind=EventKind.from_event_type(event_type),
        payload=payload,
        created=get_stripe_object_value(event, "created"),
        livemode=bool(get_stripe_object_value(event, "livemode")),
        simulated=simulated,
    )


class StripeService:
    """Service class for handling Stripe billing operations"""

    def __init__(
        self,
        billing_provider: StripeBillingProvider | None = None,
        engine: ReconciliationEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.billing_provider = billing_provider or StripeBillingProvider()
        self.engine = engine or ReconciliationEngine(self.billing_provider)
        self.clock = clock or (lambda: datetime.now(UTC))
        self.frontend_url = Config.FRONTEND_URL.rstrip("/")

        logger.info("Stripe service initialized")

    # ==================== Webhooks ====================

    def handle_webhook(self, payload: bytes, signature: str | None) -> WebhookProcessingResult:
        """
        Verify a Stripe webhook and reconcile it.

        Raises:
            WebhookVerificationError: signature or envelope invalid (do not retry)
            ReconciliationError: reconciliation failed; retry when ``retryable``
        """
        event = self.billing_provider.construct_event(payload, signature)
        inbound = to_inbound_event(event)
        logger.info(f"Processing webhook: {inbound.type} (ID: {inbound.id})")
        return self.process_event(inbound)

    def process_event(self, event: InboundEvent) -> WebhookProcessingResult:
        """Reconcile an already verified (or simulated) event and audit its outcome."""
        try:
            result = self.engine.handle_event(event)
        except ReconciliationError as e:
            webhook_events_db.record_webhook_event(
                event.id,
                event.type,
                outcome="error",
                metadata={"error": str(e), "retryable": e.retryable, "simulated": event.simulated},
            )
            if e.retryable:
                capture_payment_error(
                    e, operation="webhook", details={"event_id": event.id, "event_type": event.type}
                )
            raise

        webhook_events_db.record_webhook_event(
            event.id,
            event.type,
            outcome=result.outcome.value,
            user_id=result.user_id,
            metadata={"livemode": event.livemode, "simulated": event.simulated},
        )
        return WebhookProcessingResult(
            success=True,
            event_type=event.type,
            event_id=event.id,
            outcome=result.outcome,
            message=result.message,
            processed_at=self.clock(),
        )

    # ==================== Checkout Sessions ====================

    def create_checkout_session(
        self, user: dict[str, Any] | None, request: CreateCheckoutSessionRequest
    ) -> CheckoutSessionResponse:
        """
        Create a checkout session for the promotional subscription.

        The session carries the user id as ``client_reference_id`` and metadata so
        the webhook can link it, plus the promotional price ids the schedule
        builder needs. Anonymous checkouts carry a placeholder reference and are
        linked by email or by the post-checkout link call.

        Raises:
            ValueError: promotional prices are not configured
            BillingProviderError: Stripe rejected the request
        """
        first_price = Config.STRIPE_PROMO_FIRST_PRICE_ID
        recurring_price = Config.STRIPE_RECURRING_PRICE_ID
        if not first_price or not recurring_price:
            raise ValueError("Promotional subscription prices are not configured")

        user_id = str(user["id"]) if user and user.get("id") else None
        reference = user_id or ANONYMOUS_REFERENCE
        metadata = {
            METADATA_USER_ID: reference,
            METADATA_SCHEDULE_TYPE: SCHEDULE_TYPE_PROMOTIONAL,
            METADATA_FIRST_PRICE: first_price,
            METADATA_RECURRING_PRICE: recurring_price,
        }

        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": first_price, "quantity": 1}],
            "client_reference_id": reference,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "success_url": request.success_url
            or f"{self.frontend_url}{CHECKOUT_SUCCESS_PATH}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": request.cancel_url or f"{self.frontend_url}{CHECKOUT_CANCEL_PATH}",
        }

        existing = entitlements_db.get_entitlement_by_user(user_id) if user_id else None
        customer_id = existing.billing_customer_id if existing else None
        if customer_id:
            params["customer"] = customer_id
        else:
            email = (user or {}).get("email") or request.customer_email
            if email:
                params["customer_email"] = email

        session = self.billing_provider.create_checkout_session(**params)
        session_id = get_object_id(session)
        logger.info(
            f"Created checkout session {session_id} for "
            f"{'user ' + user_id if user_id else 'anonymous checkout'}"
        )
        return CheckoutSessionResponse(
            session_id=session_id,
            url=get_stripe_object_value(session, "url"),
            customer_id=customer_id,
        )

    # ==================== Billing Portal ====================

    def create_portal_session(self, user_id: str) -> PortalSessionResponse | None:
        """
        Open the Stripe customer portal for the user's billing customer.

        Returns None when the user has no billing customer yet.

        Raises:
            EntitlementPersistenceError: the record could not be read
            BillingProviderError: Stripe rejected the request
        """
        record = entitlements_db.get_entitlement_by_user(user_id)
        if record is None or not record.billing_customer_id:
            logger.info(f"No billing customer for user {user_id}, portal unavailable")
            return None

        session = self.billing_provider.create_billing_portal_session(
            record.billing_customer_id, return_url=f"{self.frontend_url}{PORTAL_RETURN_PATH}"
        )
        return PortalSessionResponse(url=get_stripe_object_value(session, "url"))

    # ==================== Linkage & Status ====================

    def link_subscription(self, user_id: str, checkout_session_id: str) -> LinkSubscriptionResponse:
        """Link a completed checkout session to the authenticated user."""
        record = self.engine.link_checkout_session(user_id, checkout_session_id)
        return LinkSubscriptionResponse(success=True, subscription=record.to_row())

    def get_subscription_status(self, user_id: str) -> SubscriptionStatusResponse:
        """Compute the user's access from the stored entitlement record."""
        record = entitlements_db.get_entitlement_by_user(user_id)
        if record is None:
            return SubscriptionStatusResponse(
                has_subscription=False, status=EntitlementStatus.INACTIVE.value
            )

        return SubscriptionStatusResponse(
            has_subscription=record.has_access(self.clock()),
            status=record.status,
            current_period_end=record.current_period_end,
            cancel_at_period_end=record.cancel_at_period_end,
            subscription_id=record.billing_subscription_id,
            is_promotional=record.is_promotional,
        )


_stripe_service: StripeService | None = None


def get_stripe_service() -> StripeService:
    """Return the process-wide StripeService, creating it on first use."""
    global _stripe_service
    if _stripe_service is None:
        _stripe_service = StripeService()
    return _stripe_service
