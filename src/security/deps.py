"""
FastAPI Security Dependencies
Resolve the calling user from a Supabase Auth access token.
"""

import logging
from typing import Any

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.config import supabase_config
from src.utils.exceptions import APIExceptions

logger = logging.getLogger(__name__)

# HTTP Bearer security scheme with auto_error=False to allow custom error handling
security = HTTPBearer(auto_error=False)


def _user_from_token(token: str) -> dict[str, Any] | None:
    """
    Validate a Supabase access token and return ``{"id", "email"}`` for its user.

    Returns None for invalid or expired tokens. Raises HTTPException(503) when
    Supabase Auth itself is unreachable.
    """
    try:
        client = supabase_config.get_supabase_client()
    except RuntimeError as e:
        logger.error(f"Supabase unavailable while authenticating: {e}")
        raise APIExceptions.service_unavailable("Authentication service unavailable") from e

    try:
        response = client.auth.get_user(token)
    except Exception as e:
        logger.info(f"Rejected access token: {type(e).__name__}")
        return None

    user = getattr(response, "user", None)
    if user is None or not getattr(user, "id", None):
        return None
    return {"id": str(user.id), "email": getattr(user, "email", None)}


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict[str, Any]:
    """
    Get the current authenticated user

    Args:
        credentials: Bearer credentials carrying a Supabase access token

    Returns:
        User dictionary with ``id`` and ``email``

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if not credentials or not credentials.credentials:
        raise APIExceptions.unauthorized()

    user = _user_from_token(credentials.credentials)
    if user is None:
        raise APIExceptions.unauthorized("Invalid or expired access token")
    return user


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict[str, Any] | None:
    """
    Get user if authenticated, None otherwise

    Use for endpoints that work for both auth and non-auth users. Invalid
    credentials fall back to anonymous access.
    """
    if not credentials or not credentials.credentials:
        return None

    try:
        return _user_from_token(credentials.credentials)
    except HTTPException:
        return None
