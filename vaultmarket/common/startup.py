"""Startup-time helpers for safe config logging."""

import os

from vaultmarket.common.config import CommonSettings
from vaultmarket.common.logging import logger


SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DATABASE_URL")


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)


def warn_unverifiable_providers(config: CommonSettings) -> list[str]:
    """Log each payment rail whose webhooks will be rejected for lack of a secret.

    Returns the provider names so callers (and tests) can act on them.
    """

    missing = []
    if not config.stripe_webhook_secret:
        missing.append("stripe")
    if not config.nowpayments_ipn_secret:
        missing.append("nowpayments")
    for provider in missing:
        logger.warning("webhook_secret_unset provider=%s deliveries will be rejected", provider)
    return missing
