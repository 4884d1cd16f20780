"""
Log-safety helpers for values that originate outside the service
(webhook payloads, checkout metadata, request bodies).
"""


def sanitize_for_logging(value: str) -> str:
    """Sanitize user-controlled strings for safe logging.

    Prevents log injection attacks by removing newlines and other control characters
    that could be used to forge log entries.

    Args:
        value: String value to sanitize (can be None)

    Returns:
        Sanitized string with newlines replaced by spaces
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.replace("\n", " ").replace("\r", " ").replace("\x00", "")


def mask_email(email: str | None) -> str:
    """Mask an email address for logs, keeping the first two characters and the domain."""
    if not email:
        return ""
    email = sanitize_for_logging(email)
    local, sep, domain = email.partition("@")
    if not sep:
        return f"{email[:2]}***" if len(email) > 4 else "***"
    return f"{local[:2]}***@{domain}"

