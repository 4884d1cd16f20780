import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _get_env_var(name: str, default: str | None = None, *, strip: bool = True) -> str | None:
    """
    Fetch an environment variable with optional whitespace trimming.

    Args:
        name: Environment variable to look up.
        default: Value to return when the env var is unset or empty.
        strip: Whether to strip leading/trailing whitespace (default: True).

    Returns:
        The normalized string value or the provided default when empty.
    """
    value = os.environ.get(name)
    if value is None:
        return default

    if strip:
        value = value.strip()

    return value or default


def _get_bool_env(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes"}


def _get_app_env() -> str:
    return os.environ.get("APP_ENV", "development").strip().lower() or "development"


class Config:
    """Configuration class for the application"""

    # Environment Detection
    APP_ENV = _get_app_env()  # development, staging, production
    IS_PRODUCTION = APP_ENV == "production"
    IS_DEVELOPMENT = APP_ENV == "development"

    # Supabase Configuration
    SUPABASE_URL = _get_env_var("SUPABASE_URL")
    SUPABASE_KEY = _get_env_var("SUPABASE_KEY")

    # Table names
    ENTITLEMENTS_TABLE = _get_env_var("ENTITLEMENTS_TABLE", "subscriptions")
    WEBHOOK_EVENTS_TABLE = _get_env_var("WEBHOOK_EVENTS_TABLE", "stripe_webhook_events")

    # Stripe Configuration
    STRIPE_SECRET_KEY = _get_env_var("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = _get_env_var("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION = _get_env_var("STRIPE_API_VERSION")
    # Promotional offer: discounted first period, then the standard recurring price
    STRIPE_PROMO_FIRST_PRICE_ID = _get_env_var("STRIPE_PROMO_FIRST_PRICE_ID")
    STRIPE_RECURRING_PRICE_ID = _get_env_var("STRIPE_RECURRING_PRICE_ID")

    FRONTEND_URL = _get_env_var("FRONTEND_URL", "http://localhost:3000")

    # Simulated webhook events are only ever honoured outside production
    ALLOW_SIMULATED_WEBHOOKS = _get_bool_env("ALLOW_SIMULATED_WEBHOOKS")

    # ==================== Monitoring & Observability Configuration ====================

    # Sentry Configuration
    SENTRY_DSN = os.environ.get("SENTRY_DSN")
    SENTRY_ENABLED = _get_bool_env("SENTRY_ENABLED", "true")
    SENTRY_ENVIRONMENT = os.environ.get("SENTRY_ENVIRONMENT", APP_ENV)
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get("SENTRY_TRACES_SAMPLE_RATE", "0.1"))
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")
    SENTRY_RELEASE = os.environ.get("SENTRY_RELEASE", APP_VERSION)

    # Prometheus Configuration
    PROMETHEUS_ENABLED = _get_bool_env("PROMETHEUS_ENABLED", "true")

    # Grafana Loki Configuration
    SERVICE_NAME = os.environ.get("SERVICE_NAME", "doggit-entitlements")
    LOKI_ENABLED = _get_bool_env("LOKI_ENABLED")
    LOKI_PUSH_URL = os.environ.get("LOKI_PUSH_URL", "http://loki:3100/loki/api/v1/push")

    @classmethod
    def simulated_webhooks_enabled(cls) -> bool:
        """Simulated events are a development capability and never exist in production."""
        return cls.ALLOW_SIMULATED_WEBHOOKS and not cls.IS_PRODUCTION

    @classmethod
    def validate(cls):
        """Validate that all required environment variables are set"""
        missing_vars = [name for name, value in cls._critical_vars().items() if not value]

        if missing_vars:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing_vars)}\n"
                "Please create a .env file with the following variables:\n"
                "SUPABASE_URL=your_supabase_project_url\n"
                "SUPABASE_KEY=your_supabase_service_role_key\n"
                "STRIPE_SECRET_KEY=your_stripe_secret_key\n"
                "STRIPE_WEBHOOK_SECRET=your_stripe_webhook_signing_secret"
            )

        return True

    @classmethod
    def validate_critical_env_vars(cls) -> tuple[bool, list[str]]:
        """
        Validate that all critical environment variables are set.

        Returns:
            tuple: (is_valid, missing_vars)
                - is_valid: bool indicating if all critical vars are present
                - missing_vars: list of missing variable names
        """
        missing = [name for name, value in cls._critical_vars().items() if not value]
        return len(missing) == 0, missing

    @classmethod
    def _critical_vars(cls) -> dict[str, str | None]:
        return {
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_KEY": cls.SUPABASE_KEY,
            "STRIPE_SECRET_KEY": cls.STRIPE_SECRET_KEY,
            "STRIPE_WEBHOOK_SECRET": cls.STRIPE_WEBHOOK_SECRET,
        }
