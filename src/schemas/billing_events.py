from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    """Billing lifecycle events the reconciliation engine acts on"""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

    @classmethod
    def from_event_type(cls, event_type: str) -> "EventKind | None":
        try:
            return cls(event_type)
        except ValueError:
            return None


class InboundEvent(BaseModel):
    """
    A verified billing event, reduced to what reconciliation needs.

    ``payload`` is the event's ``data.object`` (checkout session, subscription
    or invoice) as a plain dict. ``simulated`` is only ever set by the
    development webhook simulator.
    """

    id: str = Field(min_length=1)
    type: str
    kind: EventKind | None = None
    payload: dict[str, Any]
    created: int | None = None
    livemode: bool = False
    simulated: bool = False

    @property
    def is_supported(self) -> bool:
        return self.kind is not None


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"  # record created or updated
    UNCHANGED = "unchanged"  # record already in the target state
    UNLINKED = "unlinked"  # billing succeeded but no local user could be resolved
    NOT_FOUND = "not_found"  # no record tracks this customer/subscription
    STALE = "stale"  # payload is older than the stored period
    IGNORED = "ignored"  # event kind or object not relevant to entitlements


class ReconciliationResult(BaseModel):
    """Acknowledgement returned by the reconciliation engine"""

    event_id: str
    event_type: str
    outcome: ReconciliationOutcome
    user_id: str | None = None
    message: str = ""
