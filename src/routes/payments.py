#!/usr/bin/env python3
"""
Stripe Payment Routes
Endpoints for Stripe webhooks, subscription checkout, post-checkout linkage
and the customer portal
"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from src.schemas.payments import (
    CheckoutSessionResponse,
    CreateCheckoutSessionRequest,
    LinkSubscriptionRequest,
    LinkSubscriptionResponse,
    PortalSessionResponse,
)
from src.security.deps import get_current_user, get_optional_user
from src.services.payments import StripeService, get_stripe_service
from src.utils.exceptions import (
    APIExceptions,
    CheckoutLinkError,
    ReconciliationError,
    WebhookVerificationError,
)
from src.utils.security_validators import sanitize_for_logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe Payments"])


# ==================== Webhook Endpoint ====================


@router.post("/webhook", status_code=200)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature"),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Stripe webhook endpoint

    Handled events:
    - checkout.session.completed - link the new subscription to a user
    - customer.subscription.updated - sync status and billing period
    - customer.subscription.deleted - mark the entitlement canceled
    - invoice.payment_failed - mark the entitlement past due

    Other event types are acknowledged and ignored.

    Status codes tell Stripe whether to redeliver:
    - 200: processed (including unlinked or ignored events)
    - 400: bad signature or malformed event, redelivery cannot help
    - 503: transient failure (database, identity store, Stripe API), Stripe retries

    IMPORTANT: configure this endpoint in the Stripe Dashboard
    (Developers > Webhooks) and copy its signing secret to STRIPE_WEBHOOK_SECRET.
    """
    payload = await request.body()

    try:
        result = await asyncio.to_thread(stripe_service.handle_webhook, payload, stripe_signature)
    except WebhookVerificationError as e:
        logger.warning(f"Webhook rejected: {e}")
        return JSONResponse(status_code=400, content={"success": False, "message": str(e)})
    except ReconciliationError as e:
        status_code = 503 if e.retryable else 400
        logger.error(f"Webhook processing failed (status {status_code}): {e}")
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "retryable": e.retryable, "message": str(e)},
        )

    logger.info(f"Webhook processed: {result.event_type} - {result.message}")
    return JSONResponse(
        status_code=200,
        content={
            "success": result.success,
            "event_type": result.event_type,
            "event_id": result.event_id,
            "outcome": result.outcome.value if result.outcome else None,
            "message": result.message,
            "processed_at": result.processed_at.isoformat(),
        },
    )


# ==================== Checkout Sessions ====================


@router.post("/checkout", response_model=CheckoutSessionResponse)
def create_checkout_session(
    request: CreateCheckoutSessionRequest,
    user: dict[str, Any] | None = Depends(get_optional_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Create a Stripe checkout session for the promotional subscription.

    Works with or without a signed-in user; anonymous sessions are linked later
    by email or by the link-subscription call.
    """
    try:
        return stripe_service.create_checkout_session(user, request)
    except ValueError as e:
        logger.error(f"Checkout unavailable: {e}")
        raise APIExceptions.service_unavailable("Checkout is not configured") from e
    except ReconciliationError as e:
        logger.error(f"Error creating checkout session: {e}")
        raise APIExceptions.service_unavailable("Could not create checkout session") from e


# ==================== Subscription Linkage ====================


@router.post("/link-subscription", response_model=LinkSubscriptionResponse)
def link_subscription(
    request: LinkSubscriptionRequest,
    user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Link the subscription of a completed checkout session to the current user.

    Called by the client after returning from checkout so that access is
    granted without waiting for the webhook.
    """
    try:
        return stripe_service.link_subscription(user["id"], request.checkout_session_id)
    except CheckoutLinkError as e:
        logger.info(
            f"Link of checkout session {sanitize_for_logging(request.checkout_session_id)} "
            f"for user {user['id']} refused: {e}"
        )
        raise APIExceptions.from_link_error(e) from e
    except ReconciliationError as e:
        if not e.retryable:
            raise APIExceptions.bad_request(str(e)) from e
        logger.error(f"Error linking subscription for user {user['id']}: {e}")
        raise APIExceptions.service_unavailable("Could not link subscription, please retry") from e


# ==================== Customer Portal ====================


@router.post("/customer-portal", response_model=PortalSessionResponse)
def create_customer_portal_session(
    user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Open the Stripe customer portal so the subscriber can manage or cancel
    their subscription and payment method.
    """
    try:
        session = stripe_service.create_portal_session(user["id"])
    except ReconciliationError as e:
        logger.error(f"Error creating portal session for user {user['id']}: {e}")
        raise APIExceptions.service_unavailable(
            "Could not open subscription management, please retry"
        ) from e

    if session is None:
        raise APIExceptions.not_found("Billing customer")
    return session
