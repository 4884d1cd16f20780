"""
Application Constants

Checkout metadata keys and the reference values that the checkout flow writes
when no user is signed in.
"""

# Frontend paths used to build checkout and portal redirect URLs
CHECKOUT_SUCCESS_PATH = "/subscribe/success"
CHECKOUT_CANCEL_PATH = "/subscribe"
PORTAL_RETURN_PATH = "/dashboard"

# Placeholder references written by anonymous checkouts; never a real user id
ANONYMOUS_REFERENCES = frozenset({"anonymous", "anonymous_test", "anonymous_checkout"})
ANONYMOUS_REFERENCE = "anonymous"

# Checkout session / subscription metadata keys
METADATA_USER_ID = "supabase_user_id"
METADATA_LEGACY_USER_ID = "user_id"
METADATA_SCHEDULE_TYPE = "schedule_type"
METADATA_FIRST_PRICE = "first_price"
METADATA_RECURRING_PRICE = "recurring_price"
SCHEDULE_TYPE_PROMOTIONAL = "promotional"


def is_anonymous_reference(value: str | None) -> bool:
    """True for empty references and the anonymous placeholders."""
    if value is None:
        return True
    normalized = str(value).strip()
    return not normalized or normalized.lower() in ANONYMOUS_REFERENCES
