"""
Reconciliation Engine

Turns verified billing events into the local entitlement record of a user.

Every handler writes final state (never increments), so a redelivered event
converges on the same record. Errors that a redelivery could fix (store or
identity outages, provider fetch failures) are raised as retryable
ReconciliationErrors; malformed payloads are raised as non-retryable
WebhookVerificationErrors; unlinkable checkouts and schedule failures are
logged, reported and acknowledged.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from src.constants import (
    METADATA_FIRST_PRICE,
    METADATA_RECURRING_PRICE,
    METADATA_SCHEDULE_TYPE,
    SCHEDULE_TYPE_PROMOTIONAL,
)
from src.db import entitlements as entitlements_db
from src.schemas.billing_events import (
    EventKind,
    InboundEvent,
    ReconciliationOutcome,
    ReconciliationResult,
)
from src.schemas.entitlements import EntitlementRecord, EntitlementStatus
from src.services.linkage import LinkageResolver, explicit_references
from src.services.prometheus_metrics import (
    record_schedule_result,
    record_unlinked_checkout,
    record_webhook_event,
    track_webhook_processing,
)
from src.services.promotional_schedule import PromotionalScheduleBuilder
from src.utils.exceptions import (
    CheckoutLinkError,
    EntitlementPersistenceError,
    ReconciliationError,
    SchedulingError,
    WebhookVerificationError,
)
from src.utils.sentry_context import capture_payment_error, capture_payment_message
from src.utils.stripe_objects import (
    first_subscription_item,
    get_object_id,
    get_stripe_object_value,
    metadata_to_dict,
    timestamp_to_iso,
)

logger = logging.getLogger(__name__)

# Length of one billing interval for simulated subscriptions
SIMULATED_INTERVALS = {
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def promotional_terms(session: Any, subscription: Any = None) -> tuple[str, str] | None:
    """
    Return ``(discounted_price_id, recurring_price_id)`` for a promotional checkout.

    A checkout is promotional when its metadata has ``schedule_type=promotional``
    and a ``recurring_price``. The discounted price falls back to the price of
    the subscription's first item.
    """
    metadata = metadata_to_dict(get_stripe_object_value(session, "metadata"))
    if not metadata and subscription is not None:
        metadata = metadata_to_dict(get_stripe_object_value(subscription, "metadata"))

    if metadata.get(METADATA_SCHEDULE_TYPE) != SCHEDULE_TYPE_PROMOTIONAL:
        return None
    recurring_price = metadata.get(METADATA_RECURRING_PRICE)
    if not recurring_price:
        return None

    first_price = metadata.get(METADATA_FIRST_PRICE)
    if not first_price and subscription is not None:
        item = first_subscription_item(subscription)
        first_price = get_object_id(get_stripe_object_value(item, "price"))
    if not first_price:
        return None
    return first_price, recurring_price


def _period_bound(subscription: Any, item: Any, field: str) -> str | None:
    # Newer API versions report period bounds on the subscription items only
    value = get_stripe_object_value(subscription, field)
    if value is None and item is not None:
        value = get_stripe_object_value(item, field)
    return timestamp_to_iso(value)


def subscription_fields(subscription: Any) -> dict[str, Any]:
    """
    Extract the entitlement columns carried by a billing subscription.

    Raises:
        WebhookVerificationError: the subscription has no customer
    """
    subscription_id = get_object_id(subscription)
    customer_id = get_object_id(get_stripe_object_value(subscription, "customer"))
    if subscription_id and not customer_id:
        raise WebhookVerificationError(f"Subscription {subscription_id} has no customer")

    item = first_subscription_item(subscription)
    price = get_stripe_object_value(item, "price")
    recurring = get_stripe_object_value(price, "recurring")

    return {
        "billing_customer_id": customer_id,
        "billing_subscription_id": subscription_id,
        "price_id": get_object_id(price),
        "billing_interval": get_stripe_object_value(recurring, "interval"),
        "status": EntitlementStatus.from_provider(
            get_stripe_object_value(subscription, "status")
        ).value,
        "current_period_start": _period_bound(subscription, item, "current_period_start"),
        "current_period_end": _period_bound(subscription, item, "current_period_end"),
        "cancel_at_period_end": bool(get_stripe_object_value(subscription, "cancel_at_period_end")),
        "canceled_at": timestamp_to_iso(get_stripe_object_value(subscription, "canceled_at")),
        "trial_start": timestamp_to_iso(get_stripe_object_value(subscription, "trial_start")),
        "trial_end": timestamp_to_iso(get_stripe_object_value(subscription, "trial_end")),
    }


def build_snapshot(user_id: str, subscription: Any, is_promotional: bool) -> EntitlementRecord:
    """Build the full entitlement record of ``user_id`` from a billing subscription."""
    try:
        return EntitlementRecord(
            user_id=user_id,
            is_promotional=is_promotional,
            **subscription_fields(subscription),
        )
    except ValueError as e:
        # pydantic ValidationError subclasses ValueError
        raise WebhookVerificationError(f"Invalid subscription payload: {e}") from e


class ReconciliationEngine:
    """Applies billing events to entitlement records"""

    def __init__(
        self,
        billing_provider,
        linkage_resolver: LinkageResolver | None = None,
        schedule_builder: PromotionalScheduleBuilder | None = None,
        store=entitlements_db,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.billing_provider = billing_provider
        self.linkage_resolver = linkage_resolver or LinkageResolver()
        self.schedule_builder = schedule_builder or PromotionalScheduleBuilder(billing_provider)
        self.store = store
        self.clock = clock

        self._handlers = {
            EventKind.CHECKOUT_COMPLETED: self._handle_checkout_completed,
            EventKind.SUBSCRIPTION_UPDATED: self._handle_subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            EventKind.INVOICE_PAYMENT_FAILED: self._handle_invoice_payment_failed,
        }

    def handle_event(self, event: InboundEvent) -> ReconciliationResult:
        """
        Reconcile one billing event.

        Returns:
            The acknowledgement for the event.

        Raises:
            ReconciliationError: retryable or not, see the module docstring
        """
        log_extra = {"event_id": event.id, "event_type": event.type}
        if event.kind is None:
            logger.info(f"Ignoring unsupported event type {event.type}", extra=log_extra)
            result = self._result(event, ReconciliationOutcome.IGNORED, message="unsupported type")
            record_webhook_event(event.type, result.outcome.value)
            return result

        logger.info(
            f"Reconciling {event.type} (ID: {event.id}"
            f"{', simulated' if event.simulated else ''})",
            extra=log_extra,
        )
        with track_webhook_processing(event.type):
            try:
                result = self._handlers[event.kind](event)
            except ReconciliationError as e:
                record_webhook_event(event.type, "error")
                logger.error(
                    f"Reconciliation of {event.type} ({event.id}) failed "
                    f"(retryable={e.retryable}): {e}",
                    extra=log_extra,
                )
                raise

        record_webhook_event(event.type, result.outcome.value)
        logger.info(
            f"Reconciled {event.type} ({event.id}): {result.outcome.value}",
            extra={**log_extra, "user_id": result.user_id},
        )
        return result

    # ==================== Checkout ====================

    def _handle_checkout_completed(self, event: InboundEvent) -> ReconciliationResult:
        session = event.payload
        session_id = get_stripe_object_value(session, "id")

        if not get_stripe_object_value(session, "subscription") and not event.simulated:
            return self._result(
                event, ReconciliationOutcome.IGNORED, message="checkout has no subscription"
            )

        subscription = self._resolve_subscription(session, event)
        terms = promotional_terms(session, subscription)

        if terms and not event.simulated:
            self._apply_promotional_schedule(subscription, terms, event)

        user_id = self.linkage_resolver.resolve(session)
        if not user_id:
            record_unlinked_checkout()
            subscription_id = get_object_id(subscription)
            logger.error(
                f"Checkout session {session_id} completed for subscription {subscription_id} "
                f"but no user could be linked. ACTION REQUIRED: link manually.",
                extra={"event_id": event.id, "subscription_id": subscription_id},
            )
            capture_payment_message(
                "Unlinked checkout session",
                operation="checkout_completed",
                level="error",
                details={
                    "event_id": event.id,
                    "session_id": session_id,
                    "subscription_id": subscription_id,
                },
            )
            return self._result(
                event, ReconciliationOutcome.UNLINKED, message="no user could be linked"
            )

        record = build_snapshot(user_id, subscription, is_promotional=terms is not None)
        self.store.upsert_entitlement(record)
        return self._result(
            event,
            ReconciliationOutcome.APPLIED,
            user_id=user_id,
            message=f"subscription {record.billing_subscription_id} is {record.status}",
        )

    def _resolve_subscription(self, session: Any, event: InboundEvent) -> Any:
        if event.simulated:
            return self._simulated_subscription(session)

        subscription = get_stripe_object_value(session, "subscription")
        if not isinstance(subscription, str):
            return subscription
        return self.billing_provider.retrieve_subscription(subscription)

    def _simulated_subscription(self, session: Any) -> dict[str, Any]:
        """Synthesize an active subscription for a simulated checkout (no provider calls)."""
        session_id = get_stripe_object_value(session, "id") or "simulated"
        metadata = metadata_to_dict(get_stripe_object_value(session, "metadata"))
        interval = metadata.get("interval") or "month"
        now = self.clock()
        period_end = now + SIMULATED_INTERVALS.get(interval, SIMULATED_INTERVALS["month"])

        return {
            "id": get_object_id(get_stripe_object_value(session, "subscription"))
            or f"sub_sim_{session_id}",
            "object": "subscription",
            "customer": get_object_id(get_stripe_object_value(session, "customer"))
            or f"cus_sim_{session_id}",
            "status": "active",
            "current_period_start": int(now.timestamp()),
            "current_period_end": int(period_end.timestamp()),
            "cancel_at_period_end": False,
            "metadata": metadata,
            "items": {
                "data": [
                    {
                        "price": {
                            "id": metadata.get(METADATA_FIRST_PRICE) or "price_simulated",
                            "recurring": {"interval": interval},
                        }
                    }
                ]
            },
        }

    def _apply_promotional_schedule(
        self, subscription: Any, terms: tuple[str, str], event: InboundEvent
    ) -> None:
        subscription_id = get_object_id(subscription)
        discounted_price, recurring_price = terms
        try:
            result = self.schedule_builder.build_schedule(
                subscription_id,
                discounted_price,
                recurring_price,
                existing_schedule=get_stripe_object_value(subscription, "schedule") or None,
            )
            if not result.changed:
                record_schedule_result("skipped")
            else:
                record_schedule_result("created" if result.created else "repaired")
        except SchedulingError as e:
            record_schedule_result("failed")
            logger.error(
                f"Error creating promotional schedule for {subscription_id}: {e}. "
                f"Subscription remains valid at its current price.",
                extra={"event_id": event.id, "subscription_id": subscription_id},
            )
            capture_payment_error(
                e,
                operation="promotional_schedule",
                details={"event_id": event.id, "subscription_id": subscription_id},
            )

    # ==================== Subscription Lifecycle ====================

    def _handle_subscription_updated(self, event: InboundEvent) -> ReconciliationResult:
        subscription = event.payload
        subscription_id = get_object_id(subscription)
        customer_id = get_object_id(get_stripe_object_value(subscription, "customer"))
        if not subscription_id or not customer_id:
            raise WebhookVerificationError("subscription.updated payload lacks id or customer")

        record = self.store.get_entitlement_by_customer(customer_id)
        if record is None:
            logger.warning(f"No entitlement record for customer {customer_id}")
            return self._result(event, ReconciliationOutcome.NOT_FOUND)

        if record.billing_subscription_id != subscription_id:
            logger.info(
                f"Customer {customer_id} record tracks subscription "
                f"{record.billing_subscription_id}, ignoring update for {subscription_id}"
            )
            return self._result(
                event,
                ReconciliationOutcome.IGNORED,
                user_id=record.user_id,
                message="record tracks a different subscription",
            )

        fields = subscription_fields(subscription)
        changes = {
            key: fields[key]
            for key in (
                "status",
                "price_id",
                "billing_interval",
                "current_period_start",
                "current_period_end",
                "cancel_at_period_end",
                "canceled_at",
                "trial_start",
                "trial_end",
            )
        }
        incoming = EntitlementRecord.model_validate({**record.model_dump(), **changes})

        stored_end = record.current_period_end
        incoming_canceled = incoming.status == EntitlementStatus.CANCELED
        if not incoming_canceled:
            if record.status == EntitlementStatus.CANCELED:
                return self._result(
                    event,
                    ReconciliationOutcome.STALE,
                    user_id=record.user_id,
                    message="record is already canceled",
                )
            if (
                stored_end is not None
                and incoming.current_period_end is not None
                and incoming.current_period_end < stored_end
            ):
                logger.warning(
                    f"Stale subscription.updated for {subscription_id}: period end "
                    f"{incoming.current_period_end.isoformat()} < stored {stored_end.isoformat()}"
                )
                return self._result(
                    event,
                    ReconciliationOutcome.STALE,
                    user_id=record.user_id,
                    message="payload is older than the stored period",
                )

        if incoming == record:
            return self._result(event, ReconciliationOutcome.UNCHANGED, user_id=record.user_id)

        updated = self.store.update_subscription_state(
            customer_id, subscription_id, changes, expected_period_end=stored_end
        )
        if not updated:
            # The stored period moved since it was read; a redelivery re-reads and re-checks
            raise EntitlementPersistenceError(
                f"Concurrent update of {subscription_id} detected, retry required"
            )
        return self._result(
            event,
            ReconciliationOutcome.APPLIED,
            user_id=record.user_id,
            message=f"status {changes['status']}",
        )

    def _handle_subscription_deleted(self, event: InboundEvent) -> ReconciliationResult:
        subscription_id = get_object_id(event.payload)
        if not subscription_id:
            raise WebhookVerificationError("subscription.deleted payload lacks id")

        record = self.store.get_entitlement_by_subscription(subscription_id)
        if record is None:
            logger.warning(f"No entitlement record for subscription {subscription_id}")
            return self._result(event, ReconciliationOutcome.NOT_FOUND)

        if record.status == EntitlementStatus.CANCELED:
            return self._result(event, ReconciliationOutcome.UNCHANGED, user_id=record.user_id)

        updated = self.store.mark_canceled(subscription_id, self.clock())
        outcome = ReconciliationOutcome.APPLIED if updated else ReconciliationOutcome.UNCHANGED
        return self._result(event, outcome, user_id=record.user_id, message="canceled")

    def _handle_invoice_payment_failed(self, event: InboundEvent) -> ReconciliationResult:
        invoice = event.payload
        customer_id = get_object_id(get_stripe_object_value(invoice, "customer"))
        if not customer_id:
            return self._result(
                event, ReconciliationOutcome.IGNORED, message="invoice has no customer"
            )

        record = self.store.get_entitlement_by_customer(customer_id)
        if record is None:
            logger.warning(f"No entitlement record for customer {customer_id}")
            return self._result(event, ReconciliationOutcome.NOT_FOUND)

        if record.status in (EntitlementStatus.CANCELED, EntitlementStatus.PAST_DUE):
            return self._result(event, ReconciliationOutcome.UNCHANGED, user_id=record.user_id)

        updated = self.store.mark_past_due(customer_id)
        outcome = ReconciliationOutcome.APPLIED if updated else ReconciliationOutcome.UNCHANGED
        logger.warning(f"Payment failed for customer {customer_id}, user {record.user_id}")
        return self._result(event, outcome, user_id=record.user_id, message="past_due")

    # ==================== Synchronous Linkage ====================

    def link_checkout_session(self, user_id: str, checkout_session_id: str) -> EntitlementRecord:
        """
        Link the subscription created by a checkout session to ``user_id``.

        Used by the authenticated client right after checkout, so access does
        not depend on webhook latency. Promotional schedules are left to the
        webhook path.

        Raises:
            CheckoutLinkError: 404 unknown session or no subscription, 409 checkout
                not complete, 403 session explicitly belongs to another user
            ReconciliationError: provider or store failure
        """
        session = self.billing_provider.retrieve_checkout_session(checkout_session_id)
        if session is None:
            raise CheckoutLinkError("Checkout session not found", status_code=404)

        subscription = get_stripe_object_value(session, "subscription")
        if not subscription:
            raise CheckoutLinkError("No subscription found for this checkout session", 404)

        if get_stripe_object_value(session, "status") != "complete":
            raise CheckoutLinkError("Checkout session is not complete", status_code=409)

        for reference in explicit_references(session):
            if reference == user_id:
                continue
            if self.linkage_resolver.users.get_user_by_id(reference):
                logger.warning(
                    f"User {user_id} attempted to link checkout session {checkout_session_id} "
                    f"belonging to another user"
                )
                raise CheckoutLinkError("Checkout session belongs to another user", 403)

        if isinstance(subscription, str):
            subscription = self.billing_provider.retrieve_subscription(subscription)

        record = build_snapshot(
            user_id, subscription, is_promotional=promotional_terms(session) is not None
        )
        stored = self.store.upsert_entitlement(record)
        logger.info(
            f"Linked checkout session {checkout_session_id} to user {user_id}",
            extra={"user_id": user_id, "subscription_id": record.billing_subscription_id},
        )
        return stored

    @staticmethod
    def _result(
        event: InboundEvent,
        outcome: ReconciliationOutcome,
        user_id: str | None = None,
        message: str = "",
    ) -> ReconciliationResult:
        return ReconciliationResult(
            event_id=event.id,
            event_type=event.type,
            outcome=outcome,
            user_id=user_id,
            message=message or outcome.value,
        )
