"""
Helpers for reading Stripe objects.

Webhook payloads arrive as plain dicts, SDK calls return ``StripeObject``
instances, and tests pass ``MagicMock``s. These helpers read fields the same
way from all three.
"""

from datetime import UTC, datetime
from typing import Any

import stripe


def get_stripe_object_value(obj: Any, attr: str) -> Any:
    """
    Safely extract a field from a Stripe object (dict-like or attribute-based).
    """
    if obj is None:
        return None

    # Read keys first so a field named "items" is not mistaken for dict.items
    if isinstance(obj, dict):
        return obj.get(attr)
    if isinstance(obj, stripe.StripeObject):
        try:
            return obj[attr]
        except KeyError:
            return None

    if hasattr(obj, attr):
        return getattr(obj, attr)

    try:
        return obj[attr]
    except (KeyError, TypeError, IndexError):
        return None


def metadata_to_dict(metadata: Any) -> dict[str, Any]:
    """Convert Stripe metadata object into a plain dictionary."""
    if metadata is None:
        return {}
    if isinstance(metadata, dict):
        return dict(metadata)
    to_dict = getattr(metadata, "to_dict", None)
    if callable(to_dict):
        result = to_dict()
        if isinstance(result, dict):
            return result
    try:
        return dict(metadata)
    except (TypeError, ValueError):
        return {}


def coerce_to_int(value: Any) -> int | None:
    """
    Convert Stripe values (str, float) into an int representation.
    Returns None when conversion is not possible.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int | float):
        return int(value)

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(float(stripped))
        except ValueError:
            return None

    return None


def timestamp_to_iso(value: Any) -> str | None:
    """Convert a Stripe Unix timestamp (seconds) to an ISO-8601 UTC string."""
    seconds = coerce_to_int(value)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=UTC).isoformat()


def get_object_id(value: Any) -> str | None:
    """Return the id of an expandable field, whether it is an id string or an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    object_id = get_stripe_object_value(value, "id")
    return object_id if isinstance(object_id, str) and object_id else None


def first_subscription_item(subscription: Any) -> Any:
    """Return the first subscription item, or None when the list is empty."""
    items = get_stripe_object_value(subscription, "items")
    data = get_stripe_object_value(items, "data") if items is not None else None
    if not data:
        return None
    return data[0]
