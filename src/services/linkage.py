"""
Linkage Resolver

Decides which local user a completed checkout session belongs to.
"""

import logging
from typing import Any

from src.constants import METADATA_LEGACY_USER_ID, METADATA_USER_ID, is_anonymous_reference
from src.db import users as users_db
from src.utils.security_validators import mask_email, sanitize_for_logging
from src.utils.stripe_objects import get_stripe_object_value, metadata_to_dict

logger = logging.getLogger(__name__)


def explicit_references(session: Any) -> list[str]:
    """
    User references a checkout session carries, in priority order.

    ``client_reference_id`` first, then the ``supabase_user_id`` metadata key and
    the legacy ``user_id`` key. Empty values and anonymous placeholders are
    dropped.
    """
    metadata = metadata_to_dict(get_stripe_object_value(session, "metadata"))
    candidates = [
        get_stripe_object_value(session, "client_reference_id"),
        metadata.get(METADATA_USER_ID),
        metadata.get(METADATA_LEGACY_USER_ID),
    ]

    references: list[str] = []
    for candidate in candidates:
        if is_anonymous_reference(candidate):
            continue
        value = str(candidate).strip()
        if value not in references:
            references.append(value)
    return references


def session_emails(session: Any) -> list[str]:
    """Customer emails on a checkout session: ``customer_details.email`` then ``customer_email``."""
    details = get_stripe_object_value(session, "customer_details")
    emails: list[str] = []
    for candidate in (
        get_stripe_object_value(details, "email"),
        get_stripe_object_value(session, "customer_email"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            normalized = candidate.strip().lower()
            if normalized not in emails:
                emails.append(normalized)
    return emails


class LinkageResolver:
    """
    Resolves the user id a checkout session should be attributed to.

    Resolution is read-only and ordered:

    1. explicit references (see ``explicit_references``), each accepted only if
       the identity store knows that id;
    2. the customer email, accepted only when exactly one user has it.

    Identity store outages propagate as IdentityLookupError so the event is
    retried; a miss returns None.
    """

    def __init__(self, user_lookup=users_db):
        self.users = user_lookup

    def resolve(self, session: Any) -> str | None:
        session_id = get_stripe_object_value(session, "id")

        for reference in explicit_references(session):
            user = self.users.get_user_by_id(reference)
            if user:
                logger.info(f"Linked checkout session {session_id} to user {reference} by reference")
                return str(user.get("id") or reference)
            logger.warning(
                f"Checkout session {session_id} references unknown user "
                f"{sanitize_for_logging(reference)}"
            )

        for email in session_emails(session):
            matches = self.users.get_users_by_email(email, limit=2)
            if len(matches) == 1:
                user_id = str(matches[0]["id"])
                logger.info(f"Linked checkout session {session_id} to user {user_id} by email")
                return user_id
            if len(matches) > 1:
                # Ambiguous address; attributing to either user could grant the wrong account
                logger.error(
                    f"Checkout session {session_id}: email {mask_email(email)} matches "
                    f"multiple users, refusing to link"
                )
                return None

        logger.warning(f"Checkout session {session_id} could not be linked to any user")
        return None
