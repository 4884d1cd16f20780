from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


class EntitlementStatus(str, Enum):
    """Local entitlement status persisted in the subscriptions table"""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"

    @classmethod
    def from_provider(cls, provider_status: str | None) -> "EntitlementStatus":
        """Map a Stripe subscription status onto the local enum."""
        return _PROVIDER_STATUS_MAP.get((provider_status or "").lower(), cls.INACTIVE)

    @property
    def grants_access(self) -> bool:
        return self in (EntitlementStatus.ACTIVE, EntitlementStatus.TRIALING)


_PROVIDER_STATUS_MAP = {
    "active": EntitlementStatus.ACTIVE,
    "trialing": EntitlementStatus.TRIALING,
    "past_due": EntitlementStatus.PAST_DUE,
    "unpaid": EntitlementStatus.PAST_DUE,
    "canceled": EntitlementStatus.CANCELED,
    "incomplete_expired": EntitlementStatus.CANCELED,
    "incomplete": EntitlementStatus.INACTIVE,
    "paused": EntitlementStatus.INACTIVE,
}


class BillingInterval(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class EntitlementRecord(BaseModel):
    """
    One row of the subscriptions table: the current entitlement of a user.

    ``user_id`` is unique; a record is created on first linkage and mutated
    afterwards, never deleted.
    """

    model_config = ConfigDict(use_enum_values=True, validate_default=True, extra="ignore")

    user_id: str
    billing_customer_id: str | None = None
    billing_subscription_id: str | None = None
    price_id: str | None = None
    billing_interval: BillingInterval | None = None
    status: EntitlementStatus = EntitlementStatus.INACTIVE
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    is_promotional: bool = False

    @model_validator(mode="after")
    def _subscription_requires_customer(self) -> "EntitlementRecord":
        if self.billing_subscription_id and not self.billing_customer_id:
            raise ValueError("billing_subscription_id requires billing_customer_id")
        return self

    def to_row(self) -> dict[str, Any]:
        """Serialize for PostgREST (ISO timestamps, enum values)."""
        return self.model_dump(mode="json")

    def has_access(self, now: datetime) -> bool:
        """
        Whether this record entitles the user to paid content at ``now``.

        Access requires an active or trialing status and a period that has
        not yet ended (a missing period end is treated as open).
        """
        if not EntitlementStatus(self.status).grants_access:
            return False
        return self.current_period_end is None or self.current_period_end > now
