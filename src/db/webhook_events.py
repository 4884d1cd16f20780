"""
Webhook Event Audit Database Module
Keeps a record of every billing event the service has reconciled and its outcome.

The audit trail is write-only from the webhook path: redeliveries are handled
by idempotent entitlement writes, so nothing here is consulted before
processing an event.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from src.config import Config
from src.config.supabase_config import execute_with_retry

logger = logging.getLogger(__name__)

_missing_table_warning_logged = False


def _maybe_log_missing_table_hint(error: Exception) -> None:
    """
    Emit a single actionable warning when the audit table is missing from the
    Supabase schema cache so operators know to run migrations.
    """
    global _missing_table_warning_logged

    if _missing_table_warning_logged:
        return

    message = str(error)
    if Config.WEBHOOK_EVENTS_TABLE in message or "PGRST205" in message:
        logger.warning(
            f"{Config.WEBHOOK_EVENTS_TABLE} table is unavailable in Supabase (likely migrations "
            "not applied or schema cache stale). Apply "
            "supabase/migrations/20251019000000_create_subscriptions.sql, then run "
            "NOTIFY pgrst, 'reload schema'; to refresh PostgREST."
        )
        _missing_table_warning_logged = True


def record_webhook_event(
    event_id: str,
    event_type: str,
    outcome: str,
    user_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Record the outcome of a reconciled webhook event.

    Redeliveries of the same event overwrite the previous row.

    Args:
        event_id: Stripe event ID (evt_xxx)
        event_type: Stripe event type (e.g., invoice.payment_failed)
        outcome: Reconciliation outcome (applied, unlinked, error, ...)
        user_id: User the event was attributed to, if any
        metadata: Additional event metadata for debugging

    Returns:
        True if recorded successfully, False otherwise
    """
    row = {
        "event_id": event_id,
        "event_type": event_type,
        "outcome": outcome,
        "user_id": user_id,
        "metadata": metadata or {},
        "processed_at": datetime.now(UTC).isoformat(),
    }

    try:

        def _record_event(client):
            return (
                client.table(Config.WEBHOOK_EVENTS_TABLE)
                .upsert(row, on_conflict="event_id")
                .execute()
            )

        result = execute_with_retry(_record_event, operation_name="record_webhook_event")

        if result.data:
            logger.debug(f"Recorded webhook event: {event_id} ({event_type}) -> {outcome}")
            return True
        logger.warning(f"Webhook event audit write returned no rows: {event_id}")
        return False

    except Exception as e:
        _maybe_log_missing_table_hint(e)
        logger.error(f"Error recording webhook event {event_id}: {e}", exc_info=True)
        return False
