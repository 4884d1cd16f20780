from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.schemas.billing_events import ReconciliationOutcome

# ==================== Webhooks ====================


class WebhookProcessingResult(BaseModel):
    """Result of processing a webhook"""

    success: bool
    event_type: str
    event_id: str
    outcome: ReconciliationOutcome | None = None
    message: str
    processed_at: datetime


class SimulateWebhookRequest(BaseModel):
    """Body of the development-only webhook simulator"""

    user_id: str | None = None
    email: str | None = None
    promotional: bool = True


# ==================== Checkout ====================


class CreateCheckoutSessionRequest(BaseModel):
    """Request to start the promotional subscription checkout"""

    success_url: str | None = None
    cancel_url: str | None = None
    customer_email: str | None = None


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str | None = None
    customer_id: str | None = None


# ==================== Subscription Linkage ====================


class LinkSubscriptionRequest(BaseModel):
    """Link the subscription created by a checkout session to the current user"""

    model_config = ConfigDict(populate_by_name=True)

    checkout_session_id: str = Field(alias="checkoutSessionId", min_length=1)


class PortalSessionResponse(BaseModel):
    url: str


class LinkSubscriptionResponse(BaseModel):
    success: bool
    subscription: dict[str, Any] | None = None


class SubscriptionStatusResponse(BaseModel):
    """Server-side entitlement check for the authenticated user"""

    has_subscription: bool
    status: str
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    subscription_id: str | None = None
    is_promotional: bool = False
