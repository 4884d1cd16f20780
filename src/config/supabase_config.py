import logging
import time

import httpx
from supabase import Client, create_client
from supabase.client import ClientOptions

from src.config.config import Config
from src.utils.sentry_context import capture_database_error

logger = logging.getLogger(__name__)

_supabase_client: Client | None = None
_last_error: Exception | None = None  # Track last initialization error
_last_error_time: float = 0  # Timestamp of last error
ERROR_CACHE_TTL = 60.0  # Retry after 60 seconds


def get_supabase_client() -> Client:
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is not None:
        return _supabase_client

    # Check if error is stale (>60s old), retry if so
    if _last_error is not None:
        time_since_error = time.time() - _last_error_time
        if time_since_error < ERROR_CACHE_TTL:
            retry_in = int(ERROR_CACHE_TTL - time_since_error)
            raise RuntimeError(
                f"Supabase unavailable (retry in {retry_in}s): {_last_error}"
            ) from _last_error

        logger.info("Error cache expired, retrying Supabase initialization...")
        _last_error = None
        _last_error_time = 0

    try:
        if not Config.SUPABASE_URL or not Config.SUPABASE_KEY:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_KEY environment variables must be set. "
                "Please configure them with your Supabase project URL and service role key"
            )
        if not Config.SUPABASE_URL.startswith(("http://", "https://")):
            raise RuntimeError(
                f"SUPABASE_URL must start with 'http://' or 'https://'. "
                f"Current value: '{Config.SUPABASE_URL}'"
            )

        postgrest_base_url = f"{Config.SUPABASE_URL}/rest/v1"

        # base_url must be set so postgrest relative paths resolve correctly
        httpx_client = httpx.Client(
            base_url=postgrest_base_url,
            headers={
                "apikey": Config.SUPABASE_KEY,
                "Authorization": f"Bearer {Config.SUPABASE_KEY}",
            },
            timeout=httpx.Timeout(30.0, connect=10.0),
            limits=httpx.Limits(
                max_connections=50,
                max_keepalive_connections=10,
                keepalive_expiry=60.0,
            ),
            http2=True,
        )

        _supabase_client = create_client(
            supabase_url=Config.SUPABASE_URL,
            supabase_key=Config.SUPABASE_KEY,
            options=ClientOptions(
                postgrest_client_timeout=30,
                schema="public",
                headers={"X-Client-Info": f"{Config.SERVICE_NAME}/{Config.APP_VERSION}"},
            ),
        )

        if hasattr(_supabase_client, "postgrest") and hasattr(_supabase_client.postgrest, "session"):
            _supabase_client.postgrest.session = httpx_client
            logger.info("Configured Supabase client with pooled HTTP/2 connections")

        return _supabase_client

    except Exception as e:
        _last_error = e
        _last_error_time = time.time()

        logger.error(
            f"Failed to initialize Supabase client: {type(e).__name__}: {e}", exc_info=True
        )
        capture_database_error(e, operation="initialize", table="*")

        raise RuntimeError(f"Supabase client initialization failed: {e}") from e


def test_connection() -> bool:
    """
    Test database connection against the entitlements table.

    Returns:
        True if connection is successful

    Raises:
        RuntimeError: If connection test fails
    """
    try:
        client = get_supabase_client()
        client.table(Config.ENTITLEMENTS_TABLE).select("user_id").limit(1).execute()
        logger.info("✅ Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        raise RuntimeError(f"Database connection failed: {e}") from e


def init_db():
    try:
        test_connection()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def get_initialization_status() -> dict:
    """
    Get the current Supabase client initialization status.

    Returns:
        dict with keys initialized, has_error, error_message, error_type
    """
    return {
        "initialized": _supabase_client is not None,
        "has_error": _last_error is not None,
        "error_message": str(_last_error) if _last_error else None,
        "error_type": type(_last_error).__name__ if _last_error else None,
    }


def reset_supabase_client() -> bool:
    """
    Drop the cached client so the next call builds a fresh connection pool.

    Used after HTTP/2 protocol errors caused by server-side connection resets.

    Returns:
        bool: True if a cached client was reset
    """
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is None:
        return False

    session = getattr(getattr(_supabase_client, "postgrest", None), "session", None)
    if session is not None and hasattr(session, "close"):
        try:
            session.close()
        except Exception as close_error:
            logger.debug(f"Error closing httpx client during reset: {close_error}")

    _supabase_client = None
    _last_error = None
    _last_error_time = 0
    logger.info("🔄 Supabase client reset - next request will create fresh connection")
    return True


def cleanup_supabase_client():
    """Close the Supabase connection pool on application shutdown."""
    if reset_supabase_client():
        logger.info("✅ Supabase client cleanup completed")


_HTTP2_ERROR_INDICATORS = (
    "streaminputs.send_headers",
    "streaminputs.recv_data",
    "connectioninputs.recv_data",
    "connectionstate.closed",
    "stream closed",
    "connection reset by peer",
    "goaway",
    "h2_error",
    "http2 error",
    "server disconnected",
)


def is_http2_protocol_error(error: Exception) -> bool:
    """
    Check if an exception is an HTTP/2 protocol error that requires connection reset.

    Args:
        error: The exception to check

    Returns:
        bool: True if this is an HTTP/2 protocol error requiring reset
    """
    if "protocolerror" in type(error).__name__.lower():
        return True

    error_str = str(error).lower()
    if any(indicator in error_str for indicator in _HTTP2_ERROR_INDICATORS):
        return True

    return "invalid input" in error_str and ("state" in error_str or "inputs" in error_str)


def execute_with_retry(operation, max_retries: int = 2, operation_name: str = "database operation"):
    """
    Execute a database operation with automatic retry on HTTP/2 protocol errors.

    Args:
        operation: A callable that accepts a Supabase client and performs the query.
        max_retries: Maximum number of retry attempts (default: 2)
        operation_name: Name of the operation for logging purposes

    Returns:
        The result of the operation

    Raises:
        Exception: The last error when it is not retryable or retries are exhausted

    Example:
        def fetch_record(client):
            return client.table("subscriptions").select("*").eq("user_id", uid).execute()

        result = execute_with_retry(fetch_record, operation_name="get_entitlement")
    """
    for attempt in range(max_retries + 1):
        try:
            client = get_supabase_client()
            return operation(client)
        except Exception as e:
            if not is_http2_protocol_error(e) or attempt >= max_retries:
                raise

            logger.warning(
                f"HTTP/2 protocol error in {operation_name} "
                f"(attempt {attempt + 1}/{max_retries + 1}): {e}. Resetting client and retrying..."
            )
            reset_supabase_client()
            time.sleep(0.1)

    raise RuntimeError(f"{operation_name} failed with no error captured")
