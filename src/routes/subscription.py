"""
Subscription status routes

Access decisions are computed here from the stored entitlement record; the
client never supplies or caches its own entitlement.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends

from src.schemas.payments import SubscriptionStatusResponse
from src.security.deps import get_current_user
from src.services.payments import StripeService, get_stripe_service
from src.utils.exceptions import APIExceptions, EntitlementPersistenceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["Subscription"])


@router.get("/status", response_model=SubscriptionStatusResponse)
def subscription_status(
    user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """Whether the current user is entitled to paid content, and until when."""
    try:
        return stripe_service.get_subscription_status(user["id"])
    except EntitlementPersistenceError as e:
        logger.error(f"Could not load entitlement for user {user['id']}: {e}")
        raise APIExceptions.service_unavailable() from e
