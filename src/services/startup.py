"""
Startup service: environment validation and database initialization.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import sentry_sdk

from src.config import Config
from src.config.supabase_config import cleanup_supabase_client, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    """
    Application lifespan manager for startup and shutdown events
    """
    is_valid, missing_vars = Config.validate_critical_env_vars()
    if not is_valid:
        logger.error(f"❌ CRITICAL: Missing required environment variables: {missing_vars}")
        logger.error("Application cannot start without these variables")
        raise RuntimeError(f"Missing required environment variables: {missing_vars}")
    logger.info("✅ All critical environment variables validated")

    # Start in degraded mode when the database is unreachable; the client
    # retries initialization on first use once its error cache expires
    max_retries = 2
    retry_delay = 1.0
    last_error = None

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(f"🔄 Initializing Supabase database client (attempt {attempt}/{max_retries})...")
            await asyncio.to_thread(init_db)
            last_error = None
            break
        except Exception as e:
            last_error = e
            logger.warning(f"⚠️  Supabase initialization attempt {attempt}/{max_retries} failed: {e}")
            if attempt < max_retries:
                await asyncio.sleep(retry_delay * (2 ** (attempt - 1)))

    if last_error is not None:
        logger.warning("Application will start in DEGRADED MODE - entitlement endpoints may fail")
        with sentry_sdk.new_scope() as scope:
            scope.set_context("startup", {"phase": "supabase_initialization", "degraded_mode": True})
            scope.set_tag("component", "startup")
            scope.capture_exception(last_error)

    if Config.simulated_webhooks_enabled():
        logger.warning("⚠️  Simulated webhooks ENABLED - /api/debug/webhook-simulate is mounted")

    yield

    logger.info("Shutting down...")
    cleanup_supabase_client()
