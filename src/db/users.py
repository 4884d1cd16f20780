"""
Identity store lookups (Supabase Auth).

Users live in ``auth.users`` and are read through the Auth admin API with the
service-role client. This service never writes identities.
"""

import logging
import uuid
from typing import Any

from src.config.supabase_config import execute_with_retry
from src.services.prometheus_metrics import track_database_query
from src.utils.exceptions import IdentityLookupError
from src.utils.security_validators import mask_email, sanitize_for_logging
from src.utils.sentry_context import capture_database_error

logger = logging.getLogger(__name__)

# Label used for metrics and error context
AUTH_USERS = "auth.users"

# Page size for admin user listing
LIST_USERS_PAGE_SIZE = 1000


def _to_user_dict(user: Any) -> dict[str, Any]:
    metadata = getattr(user, "user_metadata", None) or {}
    email = getattr(user, "email", None)
    return {
        "id": str(user.id),
        "email": email.lower() if email else None,
        "first_name": metadata.get("first_name"),
        "last_name": metadata.get("last_name"),
    }


def _is_valid_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def get_user_by_id(user_id: str) -> dict[str, Any] | None:
    """
    Get user by user ID (Supabase auth uuid)

    Args:
        user_id: The user's uuid

    Returns:
        User dictionary if found, None otherwise. Malformed ids are never users.

    Raises:
        IdentityLookupError: If Supabase Auth could not be queried
    """
    if not _is_valid_uuid(user_id):
        logger.debug(f"Ignoring malformed user reference {sanitize_for_logging(user_id)}")
        return None

    def _select(client):
        return client.auth.admin.get_user_by_id(str(user_id))

    try:
        with track_database_query(AUTH_USERS, "select"):
            response = execute_with_retry(_select, operation_name="get_user_by_id")
    except Exception as e:
        if getattr(e, "status", None) == 404:
            return None
        logger.error(
            "Error getting user by ID %s: %s",
            sanitize_for_logging(str(user_id)),
            sanitize_for_logging(str(e)),
        )
        capture_database_error(e, operation="select", table=AUTH_USERS)
        raise IdentityLookupError(f"User lookup by id failed: {e}") from e

    user = getattr(response, "user", None)
    if user is None:
        return None
    return _to_user_dict(user)


def get_users_by_email(email: str, limit: int = 2) -> list[dict[str, Any]]:
    """
    Get the users registered with an email address.

    Emails are compared exactly after trimming and lower-casing (Supabase Auth
    stores them lower-cased). The admin API has no email filter, so users are
    listed page by page until ``limit`` matches are found or the pages run out.
    ``limit`` defaults to 2 so callers can detect an ambiguous address.

    Raises:
        IdentityLookupError: If Supabase Auth could not be queried
    """
    normalized = (email or "").strip().lower()
    if not normalized:
        return []

    matches: list[dict[str, Any]] = []
    page = 1

    try:
        with track_database_query(AUTH_USERS, "select"):
            while len(matches) < limit:
                users = execute_with_retry(
                    lambda client: client.auth.admin.list_users(
                        page=page, per_page=LIST_USERS_PAGE_SIZE
                    ),
                    operation_name="get_users_by_email",
                )
                for user in users or []:
                    if (getattr(user, "email", None) or "").lower() == normalized:
                        matches.append(_to_user_dict(user))
                if len(users or []) < LIST_USERS_PAGE_SIZE:
                    break
                page += 1
    except Exception as e:
        logger.error(
            "Error getting users by email %s: %s",
            mask_email(normalized),
            sanitize_for_logging(str(e)),
        )
        capture_database_error(e, operation="select", table=AUTH_USERS)
        raise IdentityLookupError(f"User lookup by email failed: {e}") from e

    return matches[:limit]
