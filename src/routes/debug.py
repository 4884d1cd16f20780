"""
Development-only webhook simulation route.

This router is mounted by ``create_app`` only when simulated webhooks are
enabled, and never in production.
"""

import logging

from fastapi import APIRouter, Depends

from src.schemas.payments import SimulateWebhookRequest, WebhookProcessingResult
from src.services.payments import StripeService, get_stripe_service
from src.services.simulation import SimulationDisabledError, WebhookSimulator
from src.utils.exceptions import APIExceptions, ReconciliationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/debug", tags=["Debug"])


def get_webhook_simulator(
    stripe_service: StripeService = Depends(get_stripe_service),
) -> WebhookSimulator:
    try:
        return WebhookSimulator(stripe_service)
    except SimulationDisabledError as e:
        raise APIExceptions.not_found("Endpoint") from e


@router.post("/webhook-simulate", response_model=WebhookProcessingResult)
def simulate_checkout_completed(
    request: SimulateWebhookRequest,
    simulator: WebhookSimulator = Depends(get_webhook_simulator),
):
    """Inject a simulated checkout.session.completed event into reconciliation."""
    try:
        return simulator.simulate_checkout_completed(request)
    except ReconciliationError as e:
        logger.error(f"Simulated checkout failed: {e}")
        if e.retryable:
            raise APIExceptions.service_unavailable(str(e)) from e
        raise APIExceptions.bad_request(str(e)) from e
