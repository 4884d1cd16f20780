import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import Config

# Initialize logging with Loki integration
from src.config.logging_config import configure_logging
from src.middleware.request_id_middleware import RequestIDMiddleware
from src.services.prometheus_metrics import record_http_response
from src.services.startup import lifespan

configure_logging()
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
if Config.SENTRY_ENABLED and Config.SENTRY_DSN:
    import sentry_sdk

    def sentry_traces_sampler(sampling_context):
        """
        Sampling strategy:
        - Errors: always (parent_sampled)
        - Development: 100%
        - Health/metrics endpoints: 0%
        - Stripe webhooks: 50%
        - Other endpoints: SENTRY_TRACES_SAMPLE_RATE
        """
        if sampling_context.get("parent_sampled") is not None:
            return 1.0

        if Config.SENTRY_ENVIRONMENT == "development":
            return 1.0

        endpoint = sampling_context.get("asgi_scope", {}).get("path", "")
        if endpoint in ("/health", "/metrics"):
            return 0.0
        if endpoint == "/api/stripe/webhook":
            return 0.5
        return Config.SENTRY_TRACES_SAMPLE_RATE

    sentry_sdk.init(
        dsn=Config.SENTRY_DSN,
        send_default_pii=False,
        environment=Config.SENTRY_ENVIRONMENT,
        release=Config.SENTRY_RELEASE,
        traces_sampler=sentry_traces_sampler,
    )
    logger.info(
        f"✅ Sentry initialized (environment: {Config.SENTRY_ENVIRONMENT}, "
        f"release: {Config.SENTRY_RELEASE})"
    )
else:
    logger.info("⏭️  Sentry disabled (SENTRY_ENABLED=false or SENTRY_DSN not set)")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Doggit Entitlements API",
        description="Subscription checkout, Stripe webhook reconciliation and entitlement checks",
        version=Config.APP_VERSION,
        lifespan=lifespan,
    )

    if Config.IS_PRODUCTION:
        allowed_origins = [Config.FRONTEND_URL]
    else:
        allowed_origins = [
            Config.FRONTEND_URL,
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(dict.fromkeys(allowed_origins)),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID", "sentry-trace", "baggage"],
    )
    app.add_middleware(RequestIDMiddleware)

    if Config.PROMETHEUS_ENABLED:

        @app.middleware("http")
        async def prometheus_http_metrics(request: Request, call_next):
            start_time = time.time()
            response = await call_next(request)
            # Route templates keep label cardinality bounded; set once routing has run
            endpoint = getattr(request.scope.get("route"), "path", "unmatched")
            record_http_response(
                request.method, endpoint, response.status_code, time.time() - start_time
            )
            return response

    # ==================== Routers ====================

    from src.routes.health import router as health_router
    from src.routes.payments import router as payments_router
    from src.routes.subscription import router as subscription_router

    app.include_router(health_router)
    app.include_router(payments_router)
    app.include_router(subscription_router)
    logger.info("  [OK] Health, Stripe and subscription routers loaded")

    if Config.simulated_webhooks_enabled():
        from src.routes.debug import router as debug_router

        app.include_router(debug_router)
        logger.warning("  [DEV] Webhook simulator router loaded")

    # ==================== Exception Handlers ====================

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log and report unexpected exceptions, returning a generic 500."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        request_id = getattr(request.state, "request_id", None)

        from src.utils.sentry_context import capture_error

        capture_error(
            exc,
            context_type="request",
            context_data={
                "path": request.url.path,
                "method": request.method,
                "request_id": request_id,
            },
            tags={"error_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request_id},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.main:app", host="0.0.0.0", port=8000)
