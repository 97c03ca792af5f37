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


def _get_bool_env(name: str, default: bool = False) -> bool:
    value = _get_env_var(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    value = _get_env_var(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    """Configuration class for the application"""

    # Environment Detection
    APP_ENV = os.environ.get("APP_ENV", "development")  # development, staging, production
    IS_PRODUCTION = APP_ENV == "production"
    IS_DEVELOPMENT = APP_ENV == "development"
    IS_TESTING = APP_ENV in {"testing", "test"} or os.environ.get("TESTING", "").lower() in {
        "1",
        "true",
        "yes",
    }

    # Supabase Configuration
    SUPABASE_URL = os.environ.get("SUPABASE_URL")
    SUPABASE_KEY = os.environ.get("SUPABASE_KEY")

    # Stripe Configuration
    STRIPE_SECRET_KEY = _get_env_var("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = _get_env_var("STRIPE_WEBHOOK_SECRET")
    STRIPE_MONTHLY_PRICE_ID = _get_env_var("STRIPE_MONTHLY_PRICE_ID")
    STRIPE_YEARLY_PRICE_ID = _get_env_var("STRIPE_YEARLY_PRICE_ID")

    # Frontend origin used for checkout and portal redirects
    BASE_URL = _get_env_var("BASE_URL", "http://localhost:3000").rstrip("/")

    # Twitch OAuth / Helix
    TWITCH_CLIENT_ID = _get_env_var("TWITCH_CLIENT_ID")
    TWITCH_CLIENT_SECRET = _get_env_var("TWITCH_CLIENT_SECRET")
    TWITCH_REDIRECT_URI = _get_env_var("TWITCH_REDIRECT_URI")
    TWITCH_API_BASE_URL = _get_env_var("TWITCH_API_BASE_URL", "https://api.twitch.tv/helix")
    TWITCH_OAUTH_URL = _get_env_var("TWITCH_OAUTH_URL", "https://id.twitch.tv/oauth2/token")
    TWITCH_TIMEOUT_SECONDS = float(_get_env_var("TWITCH_TIMEOUT_SECONDS", "10.0"))

    # Premium status cache
    PREMIUM_CACHE_TTL_SECONDS = _get_int_env("PREMIUM_CACHE_TTL_SECONDS", 300)

    # Feature limits
    MAX_FREE_STREAMS = _get_int_env("MAX_FREE_STREAMS", 3)
    MAX_PREMIUM_STREAMS = _get_int_env("MAX_PREMIUM_STREAMS", 9)
    MAX_FREE_PACKS = _get_int_env("MAX_FREE_PACKS", 5)

    # Feature toggles
    ENABLE_VOD_SYNC = _get_bool_env("ENABLE_VOD_SYNC", True)
    ENABLE_NOTIFICATIONS = _get_bool_env("ENABLE_NOTIFICATIONS", True)

    # Pricing (USD per month)
    SUBSCRIPTION_PRICE = float(_get_env_var("SUBSCRIPTION_PRICE", "5.99"))

    # Sentry
    SENTRY_DSN = _get_env_var("SENTRY_DSN")
    SENTRY_ENABLED = _get_bool_env("SENTRY_ENABLED", False)
    SENTRY_ENVIRONMENT = _get_env_var("SENTRY_ENVIRONMENT", APP_ENV)
    SENTRY_TRACES_SAMPLE_RATE = float(_get_env_var("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # CORS
    CORS_ORIGINS = [
        origin.strip()
        for origin in (_get_env_var("CORS_ORIGINS") or BASE_URL).split(",")
        if origin.strip()
    ]

    @classmethod
    def validate(cls):
        """Validate that all required environment variables are set"""
        missing_vars = []

        if not cls.SUPABASE_URL:
            missing_vars.append("SUPABASE_URL")
        if not cls.SUPABASE_KEY:
            missing_vars.append("SUPABASE_KEY")

        if missing_vars:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing_vars)}\n"
                "Please create a .env file with the following variables:\n"
                "SUPABASE_URL=your_supabase_project_url\n"
                "SUPABASE_KEY=your_supabase_service_role_key\n"
                "STRIPE_SECRET_KEY=your_stripe_secret_key (billing)\n"
                "STRIPE_WEBHOOK_SECRET=your_stripe_webhook_secret (billing)"
            )

        return True

    @classmethod
    def is_billing_configured(cls) -> bool:
        return bool(cls.STRIPE_SECRET_KEY and cls.STRIPE_WEBHOOK_SECRET)
