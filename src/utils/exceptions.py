"""
Exception types for entitlement reconciliation and HTTP exception factories.

Reconciliation errors carry a ``retryable`` flag. The webhook route turns
retryable errors into a 5xx so Stripe redelivers the event, and
non-retryable ones into a 4xx so it stops.

Usage:
    from src.utils.exceptions import APIExceptions, EntitlementPersistenceError

    raise EntitlementPersistenceError("upsert failed", operation="upsert")
    raise APIExceptions.unauthorized()
"""

import logging

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Base class for failures while reconciling a billing event."""

    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class WebhookVerificationError(ReconciliationError):
    """Bad or missing signature, or a malformed event envelope/payload."""

    retryable = False


class EntitlementPersistenceError(ReconciliationError):
    """The entitlement store could not be read or written."""

    retryable = True

    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class IdentityLookupError(ReconciliationError):
    """The identity store could not be queried (distinct from "no such user")."""

    retryable = True


class BillingProviderError(ReconciliationError):
    """Canonical state could not be fetched from the billing provider."""

    retryable = True


class SchedulingError(Exception):
    """Promotional schedule creation failed. Never fatal to reconciliation."""

    def __init__(self, message: str, *, subscription_id: str | None = None):
        super().__init__(message)
        self.subscription_id = subscription_id


class CheckoutLinkError(Exception):
    """A synchronous link request could not be honoured."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class APIExceptions:
    """Factory class for creating standardized HTTP exceptions."""

    @staticmethod
    def unauthorized(detail: str = "User not authenticated") -> HTTPException:
        """401 Unauthorized - Authentication failed."""
        return HTTPException(status_code=401, detail=detail)

    @staticmethod
    def bad_request(detail: str = "Invalid request") -> HTTPException:
        """400 Bad Request."""
        return HTTPException(status_code=400, detail=detail)

    @staticmethod
    def not_found(resource: str = "Resource") -> HTTPException:
        """404 Not Found."""
        return HTTPException(status_code=404, detail=f"{resource} not found")

    @staticmethod
    def service_unavailable(detail: str = "Service temporarily unavailable") -> HTTPException:
        """
        503 Service Unavailable - A dependency (database, billing provider) failed.

        Args:
            detail: Custom error message

        Returns:
            HTTPException with status 503
        """
        return HTTPException(status_code=503, detail=detail)

    @staticmethod
    def from_link_error(error: CheckoutLinkError) -> HTTPException:
        """Translate a CheckoutLinkError into its HTTP response."""
        return HTTPException(status_code=error.status_code, detail=str(error))
