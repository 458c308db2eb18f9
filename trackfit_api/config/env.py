"""Environment variable resolution utilities.

Every getter reads the environment at call time so configuration can be
changed per process (and per test) without reloading modules. Required
values fail fast with ValueError; callers translate that into the
appropriate API error.
"""

import os
from typing import Optional

DEFAULT_CURRENCY = "inr"
DEFAULT_STRIPE_API_BASE = "https://api.stripe.com"
DEFAULT_SIGNATURE_TOLERANCE_SEC = 300

END_DATE_POLICY_CALENDAR = "calendar"
END_DATE_POLICY_FIXED_30_DAYS = "fixed_30_days"
_END_DATE_POLICIES = {END_DATE_POLICY_CALENDAR, END_DATE_POLICY_FIXED_30_DAYS}


def get_app_env() -> str:
    """Get deployment environment name.

    Priority:
    1. TRACKFIT_ENV (canonical)
    2. NODE_ENV (legacy deployment compat)
    3. Default: "local"

    Returns:
        Environment name (lowercase)
    """
    return (
        os.getenv("TRACKFIT_ENV")
        or os.getenv("NODE_ENV")
        or "local"
    ).lower()


def is_production_env() -> bool:
    """Return True when running in production."""
    return get_app_env() in {"prod", "production"}


def get_database_url() -> str:
    """Get database URL.

    Production requires DATABASE_URL; elsewhere a local SQLite file is used.

    Raises:
        RuntimeError: If DATABASE_URL is missing in production
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    if is_production_env():
        raise RuntimeError(
            "DATABASE_URL environment variable is required in production (TRACKFIT_ENV=prod). "
            "Check deployment configuration and secrets injection."
        )
    return "sqlite:///./trackfit.db"


def get_jwt_secret() -> str:
    """Get the shared secret used to validate bearer tokens.

    Raises:
        ValueError: If JWT_SECRET is not set
    """
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise ValueError("JWT_SECRET is required. Set it in environment configuration.")
    return secret


def get_stripe_secret_key() -> str:
    """Get Stripe API secret key.

    Raises:
        ValueError: If STRIPE_SECRET_KEY is not set
    """
    key = os.getenv("STRIPE_SECRET_KEY")
    if not key:
        raise ValueError(
            "STRIPE_SECRET_KEY is required. "
            "Set it in environment configuration."
        )
    return key


def get_stripe_webhook_secret() -> str:
    """Get Stripe webhook signing secret (whsec_...).

    Raises:
        ValueError: If STRIPE_WEBHOOK_SECRET is not set
    """
    secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ValueError(
            "STRIPE_WEBHOOK_SECRET is required for webhook verification. "
            "Set it in environment configuration."
        )
    return secret


def get_stripe_api_base() -> str:
    return os.getenv("STRIPE_API_BASE", DEFAULT_STRIPE_API_BASE).rstrip("/")


def get_payment_currency() -> str:
    return os.getenv("PAYMENT_CURRENCY", DEFAULT_CURRENCY).lower()


def get_client_url() -> Optional[str]:
    """Get the client application base URL used for checkout redirects.

    Returns None when unset; the checkout flow treats that as the payment
    service being unavailable.
    """
    url = os.getenv("CLIENT_URL")
    if not url:
        return None
    return url.rstrip("/")


def get_webhook_end_date_policy() -> str:
    """Get membership end-date policy applied by the webhook path.

    Values: "fixed_30_days" (default) or "calendar".

    Raises:
        ValueError: If the configured value is not a known policy
    """
    policy = os.getenv("TRACKFIT_WEBHOOK_END_DATE_POLICY", END_DATE_POLICY_FIXED_30_DAYS).lower()
    if policy not in _END_DATE_POLICIES:
        raise ValueError(
            f"TRACKFIT_WEBHOOK_END_DATE_POLICY must be one of {sorted(_END_DATE_POLICIES)}, got '{policy}'"
        )
    return policy


def diagnostics_enabled() -> bool:
    """Diagnostics endpoints are never enabled in production."""
    if is_production_env():
        return False
    return os.getenv("TRACKFIT_ENABLE_DIAGNOSTICS", "").lower() in {"1", "true", "yes"}


def get_smtp_settings() -> dict:
    """Get SMTP settings for outbound mail.

    Returns:
        dict with host, port, user, password, sender

    Raises:
        ValueError: If SMTP_HOST or the sender address is not set
    """
    host = os.getenv("SMTP_HOST")
    user = os.getenv("SMTP_USER")
    sender = os.getenv("MAIL_FROM") or user
    if not host or not sender:
        raise ValueError(
            "SMTP_HOST and MAIL_FROM (or SMTP_USER) are required to send mail. "
            "Set them in environment configuration."
        )
    return {
        "host": host,
        "port": int(os.getenv("SMTP_PORT", "587")),
        "user": user,
        "password": os.getenv("SMTP_PASSWORD"),
        "sender": sender,
    }
