"""
Entitlement record storage (Supabase ``subscriptions`` table).

One row per user, unique on ``user_id``. Rows are created by upsert and then
mutated in place; nothing in this module deletes them.

Every function raises EntitlementPersistenceError when the store cannot be
reached or rejects the query, so callers can tell an outage from "no row".
"""

import logging
from datetime import UTC, datetime
from typing import Any

from src.config import Config
from src.config.supabase_config import execute_with_retry
from src.schemas.entitlements import EntitlementRecord, EntitlementStatus
from src.services.prometheus_metrics import record_entitlement_write, track_database_query
from src.utils.exceptions import EntitlementPersistenceError
from src.utils.sentry_context import capture_database_error

logger = logging.getLogger(__name__)


def _table() -> str:
    return Config.ENTITLEMENTS_TABLE


def _persistence_error(
    error: Exception, operation: str, details: dict[str, Any]
) -> EntitlementPersistenceError:
    logger.error(
        f"Entitlement store {operation} failed ({details}): {type(error).__name__}: {error}",
        exc_info=True,
    )
    capture_database_error(error, operation=operation, table=_table(), details=details)
    return EntitlementPersistenceError(f"{operation} failed: {error}", operation=operation)


def _to_record(row: dict[str, Any] | None) -> EntitlementRecord | None:
    if not row:
        return None
    return EntitlementRecord.model_validate(row)


def _get_one(column: str, value: str, operation: str) -> EntitlementRecord | None:
    def _select(client):
        return (
            client.table(_table())
            .select("*")
            .eq(column, value)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )

    try:
        with track_database_query(_table(), "select"):
            result = execute_with_retry(_select, operation_name=operation)
    except Exception as e:
        raise _persistence_error(e, operation, {column: value}) from e

    return _to_record(result.data[0] if result.data else None)


def get_entitlement_by_user(user_id: str) -> EntitlementRecord | None:
    """Return the entitlement record of a user, or None if they have never subscribed."""
    return _get_one("user_id", user_id, "get_entitlement_by_user")


def get_entitlement_by_customer(customer_id: str) -> EntitlementRecord | None:
    """
    Return the record tracking a billing customer.

    If several users were ever linked to the same customer, the most recently
    updated record wins.
    """
    return _get_one("billing_customer_id", customer_id, "get_entitlement_by_customer")


def get_entitlement_by_subscription(subscription_id: str) -> EntitlementRecord | None:
    return _get_one("billing_subscription_id", subscription_id, "get_entitlement_by_subscription")


def upsert_entitlement(record: EntitlementRecord) -> EntitlementRecord:
    """
    Create or replace the record for ``record.user_id`` in one statement.

    Uses ``INSERT ... ON CONFLICT (user_id) DO UPDATE`` so concurrent writers for
    the same user converge on one row.
    """
    row = record.to_row()
    row["updated_at"] = datetime.now(UTC).isoformat()

    def _upsert(client):
        return client.table(_table()).upsert(row, on_conflict="user_id").execute()

    try:
        with track_database_query(_table(), "upsert"):
            result = execute_with_retry(_upsert, operation_name="upsert_entitlement")
    except Exception as e:
        raise _persistence_error(
            e,
            "upsert_entitlement",
            {
                "user_id": record.user_id,
                "billing_subscription_id": record.billing_subscription_id,
            },
        ) from e

    record_entitlement_write("upsert", str(record.status))
    logger.info(
        f"Upserted entitlement for user {record.user_id}: status={record.status}, "
        f"subscription={record.billing_subscription_id}"
    )
    return _to_record(result.data[0] if result.data else None) or record


def update_subscription_state(
    customer_id: str,
    subscription_id: str,
    changes: dict[str, Any],
    expected_period_end: datetime | None,
) -> int:
    """
    Apply ``changes`` to the record of a customer/subscription pair, but only if
    its ``current_period_end`` still equals ``expected_period_end``.

    The condition is evaluated by the database, so a concurrent writer that
    moved the period in between makes this update match zero rows. Canceled
    records are terminal: an update to any other status never matches them.

    Returns:
        Number of rows updated (0 when the compare-and-set lost).
    """
    payload = {**changes, "updated_at": datetime.now(UTC).isoformat()}

    def _update(client):
        query = (
            client.table(_table())
            .update(payload)
            .eq("billing_customer_id", customer_id)
            .eq("billing_subscription_id", subscription_id)
        )
        if expected_period_end is None:
            query = query.is_("current_period_end", "null")
        else:
            query = query.eq("current_period_end", expected_period_end.isoformat())
        if changes.get("status") != EntitlementStatus.CANCELED.value:
            query = query.neq("status", EntitlementStatus.CANCELED.value)
        return query.execute()

    try:
        with track_database_query(_table(), "update"):
            result = execute_with_retry(_update, operation_name="update_subscription_state")
    except Exception as e:
        raise _persistence_error(
            e,
            "update_subscription_state",
            {"billing_customer_id": customer_id, "billing_subscription_id": subscription_id},
        ) from e

    updated = len(result.data or [])
    if updated:
        record_entitlement_write("update", str(changes.get("status", "unknown")))
    return updated


def mark_canceled(subscription_id: str, canceled_at: datetime) -> int:
    """
    Cancel the record tracking ``subscription_id``.

    Rows already canceled are left alone so the first cancellation time is kept.

    Returns:
        Number of rows that transitioned to canceled.
    """
    payload = {
        "status": EntitlementStatus.CANCELED.value,
        "canceled_at": canceled_at.isoformat(),
        "updated_at": datetime.now(UTC).isoformat(),
    }

    def _cancel(client):
        return (
            client.table(_table())
            .update(payload)
            .eq("billing_subscription_id", subscription_id)
            .neq("status", EntitlementStatus.CANCELED.value)
            .execute()
        )

    try:
        with track_database_query(_table(), "update"):
            result = execute_with_retry(_cancel, operation_name="mark_canceled")
    except Exception as e:
        raise _persistence_error(
            e, "mark_canceled", {"billing_subscription_id": subscription_id}
        ) from e

    updated = len(result.data or [])
    if updated:
        record_entitlement_write("cancel", EntitlementStatus.CANCELED.value)
    return updated


def mark_past_due(customer_id: str) -> int:
    """
    Flag the customer's record as past due after a failed invoice.

    Period bounds are not touched and canceled records stay canceled.

    Returns:
        Number of rows updated.
    """
    payload = {
        "status": EntitlementStatus.PAST_DUE.value,
        "updated_at": datetime.now(UTC).isoformat(),
    }

    def _past_due(client):
        return (
            client.table(_table())
            .update(payload)
            .eq("billing_customer_id", customer_id)
            .neq("status", EntitlementStatus.CANCELED.value)
            .execute()
        )

    try:
        with track_database_query(_table(), "update"):
            result = execute_with_retry(_past_due, operation_name="mark_past_due")
    except Exception as e:
        raise _persistence_error(e, "mark_past_due", {"billing_customer_id": customer_id}) from e

    updated = len(result.data or [])
    if updated:
        record_entitlement_write("past_due", EntitlementStatus.PAST_DUE.value)
    return updated
