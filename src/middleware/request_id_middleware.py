"""
Request ID Middleware

Assigns every request an id, exposes it on ``request.state``, in the
``X-Request-ID`` response header and to log records through a context
variable, so webhook logs can be correlated with Stripe delivery attempts.

Usage:
    from src.middleware.request_id_middleware import RequestIDMiddleware

    # In main.py
    app.add_middleware(RequestIDMiddleware)
"""

import logging
import re
import uuid
from contextvars import ContextVar

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Maximum length for client-supplied request IDs
_MAX_REQUEST_ID_LENGTH = 128

# Allowlist for client-supplied ids: anything else is replaced to keep logs injection-free
_VALID_REQUEST_ID_RE = re.compile(r"^[a-zA-Z0-9._-]{1,128}$")

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def normalize_request_id(raw_request_id: str | None) -> str:
    """Validate a client-supplied id, falling back to a generated one."""
    candidate = (raw_request_id or "")[:_MAX_REQUEST_ID_LENGTH]
    if not candidate or not _VALID_REQUEST_ID_RE.match(candidate):
        return _new_request_id()
    return candidate


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to generate and attach request IDs to all requests.

    Priority: X-Request-ID header > X-Correlation-ID header > generated id.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = normalize_request_id(
            request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")
        )
        request.state.request_id = request_id
        token = _request_id_var.set(request_id)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request ID: {request_id} | Error during request processing: {e}",
                exc_info=True,
            )
            raise
        finally:
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id() -> str | None:
    """
    Return the id of the request being handled, or None outside a request.

    Usage:
        from src.middleware.request_id_middleware import get_request_id

        logger.info(f"handling {get_request_id()}")
    """
    return _request_id_var.get()
