"""
Sentry error context utilities.

Helpers that attach structured context to errors captured by Sentry. When
Sentry has not been initialised (no DSN) the SDK calls are no-ops.
"""

import logging
from typing import Any

import sentry_sdk

logger = logging.getLogger(__name__)


def capture_error(
    exception: Exception,
    context_type: str | None = None,
    context_data: dict[str, Any] | None = None,
    tags: dict[str, str] | None = None,
) -> str | None:
    """
    Capture an exception to Sentry with structured context.

    Args:
        exception: The exception to capture
        context_type: Type of context for the error
        context_data: Additional context information
        tags: Dictionary of tags for filtering

    Returns:
        Event ID if captured, None if Sentry is disabled or capture failed
    """
    try:
        with sentry_sdk.new_scope() as scope:
            if context_type and context_data:
                scope.set_context(context_type, context_data)
            for key, value in (tags or {}).items():
                scope.set_tag(key, str(value))
            return scope.capture_exception(exception)
    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")
        return None


def capture_database_error(
    exception: Exception,
    operation: str,
    table: str,
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Capture a database error with standard context.

    Args:
        exception: The exception to capture
        operation: Database operation (e.g., 'upsert', 'select', 'update')
        table: Table name
        details: Additional details (filters, ids)

    Returns:
        Event ID if captured, None otherwise
    """
    context_data = {"operation": operation, "table": table, **(details or {})}
    return capture_error(
        exception,
        context_type="database",
        context_data=context_data,
        tags={"operation": operation, "table": table},
    )


def capture_payment_error(
    exception: Exception,
    operation: str,
    provider: str = "stripe",
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Capture a payment-related error with standard context.

    Args:
        exception: The exception to capture
        operation: Payment operation (e.g., 'webhook', 'schedule', 'link')
        provider: Payment provider (default: 'stripe')
        user_id: User ID if applicable
        details: Additional details (event id, customer id, subscription id)

    Returns:
        Event ID if captured, None otherwise
    """
    context_data = {"operation": operation, "provider": provider}
    if user_id:
        context_data["user_id"] = user_id
    if details:
        context_data.update(details)

    return capture_error(
        exception,
        context_type="payment",
        context_data=context_data,
        tags={"operation": operation, "provider": provider},
    )


def capture_payment_message(
    message: str,
    operation: str,
    level: str = "warning",
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Report a payment condition that is not an exception (e.g. an unlinked checkout).

    Returns:
        Event ID if captured, None otherwise
    """
    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_context("payment", {"operation": operation, **(details or {})})
            scope.set_tag("operation", operation)
            scope.set_tag("provider", "stripe")
            return scope.capture_message(message, level=level)
    except Exception as e:
        logger.warning(f"Failed to capture message to Sentry: {e}")
        return None
