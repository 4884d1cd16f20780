"""
Health and metrics endpoints
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from src.config import Config

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", tags=["health"])
async def health_check():
    """
    Simple health check endpoint

    Always returns HTTP 200 while the application is running, even if the
    database is unavailable (degraded mode). Check the response body for
    database connectivity.
    """
    from src.config.supabase_config import get_initialization_status

    db_status = get_initialization_status()

    response = {
        "status": "healthy",
        "environment": Config.APP_ENV,
        "timestamp": datetime.now(UTC).isoformat(),
    }

    if db_status["has_error"]:
        response["database"] = "unavailable"
        response["mode"] = "degraded"
        response["database_error"] = db_status["error_type"]
    elif db_status["initialized"]:
        response["database"] = "connected"
    else:
        response["database"] = "not_initialized"

    return response


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
