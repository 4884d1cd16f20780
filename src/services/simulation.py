"""
Development webhook simulator.

Builds checkout-completed events locally and feeds them straight into
reconciliation, so the subscription flow can be exercised without Stripe.
The simulator refuses to exist unless simulated webhooks are enabled, which
is never the case in production.
"""

import logging
import secrets
import time

from src.config import Config
from src.constants import (
    ANONYMOUS_REFERENCE,
    ANONYMOUS_REFERENCES,
    METADATA_FIRST_PRICE,
    METADATA_RECURRING_PRICE,
    METADATA_SCHEDULE_TYPE,
    METADATA_USER_ID,
    SCHEDULE_TYPE_PROMOTIONAL,
)
from src.schemas.billing_events import EventKind, InboundEvent
from src.schemas.payments import SimulateWebhookRequest, WebhookProcessingResult

logger = logging.getLogger(__name__)


class SimulationDisabledError(RuntimeError):
    """Raised when a simulator is requested while simulation is disabled."""


class WebhookSimulator:
    def __init__(self, stripe_service):
        if not Config.simulated_webhooks_enabled():
            raise SimulationDisabledError(
                "Simulated webhooks are disabled (set ALLOW_SIMULATED_WEBHOOKS outside production)"
            )
        self.stripe_service = stripe_service

    def build_checkout_completed(self, request: SimulateWebhookRequest) -> InboundEvent:
        """Build a simulated checkout.session.completed event for ``request``."""
        session_id = f"cs_sim_{secrets.token_hex(8)}"
        reference = request.user_id or "anonymous_test"
        metadata = {METADATA_USER_ID: reference}
        if request.promotional:
            metadata[METADATA_SCHEDULE_TYPE] = SCHEDULE_TYPE_PROMOTIONAL
            metadata[METADATA_FIRST_PRICE] = Config.STRIPE_PROMO_FIRST_PRICE_ID or "price_sim_first"
            metadata[METADATA_RECURRING_PRICE] = Config.STRIPE_RECURRING_PRICE_ID or "price_sim_recurring"

        session = {
            "id": session_id,
            "object": "checkout.session",
            "mode": "subscription",
            "status": "complete",
            "client_reference_id": reference,
            "customer": f"cus_sim_{secrets.token_hex(6)}",
            "subscription": f"sub_sim_{secrets.token_hex(6)}",
            "customer_details": {"email": request.email},
            "metadata": metadata,
        }
        return InboundEvent(
            id=f"evt_sim_{secrets.token_hex(12)}",
            type=EventKind.CHECKOUT_COMPLETED.value,
            kind=EventKind.CHECKOUT_COMPLETED,
            payload=session,
            created=int(time.time()),
            livemode=False,
            simulated=True,
        )

    def simulate_checkout_completed(self, request: SimulateWebhookRequest) -> WebhookProcessingResult:
        event = self.build_checkout_completed(request)
        reference = event.payload["client_reference_id"]
        if reference in ANONYMOUS_REFERENCES:
            reference = ANONYMOUS_REFERENCE
        logger.warning(f"Injecting simulated checkout.session.completed {event.id} for {reference}")
        return self.stripe_service.process_event(event)
