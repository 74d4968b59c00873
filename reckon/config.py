"""
Settings — environment-driven configuration and logging setup.
"""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str = os.getenv("RECKON_DATABASE_URL", "sqlite+aiosqlite:///./reckon.db")
    currency: str = os.getenv("RECKON_CURRENCY", "NGN")

    paystack_secret_key: str = os.getenv("RECKON_PAYSTACK_SECRET_KEY", "")
    paystack_base_url: str = os.getenv("RECKON_PAYSTACK_BASE_URL", "https://api.paystack.co")
    provider_timeout_seconds: float = float(os.getenv("RECKON_PROVIDER_TIMEOUT_SECONDS", "10"))

    verify_retry_attempts: int = int(os.getenv("RECKON_VERIFY_RETRY_ATTEMPTS", "3"))
    verify_backoff_initial: float = float(os.getenv("RECKON_VERIFY_BACKOFF_INITIAL", "0.2"))
    verify_backoff_factor: float = float(os.getenv("RECKON_VERIFY_BACKOFF_FACTOR", "2.0"))
    verify_backoff_max: float = float(os.getenv("RECKON_VERIFY_BACKOFF_MAX", "2.0"))

    idempotency_window_seconds: int = int(os.getenv("RECKON_IDEMPOTENCY_WINDOW_SECONDS", "600"))
    order_number_attempts: int = int(os.getenv("RECKON_ORDER_NUMBER_ATTEMPTS", "5"))

    create_order_limit_per_hour: int = int(os.getenv("RECKON_CREATE_ORDER_LIMIT_PER_HOUR", "10"))
    verify_payment_limit_per_hour: int = int(os.getenv("RECKON_VERIFY_PAYMENT_LIMIT_PER_HOUR", "60"))
    webhook_limit_per_hour: int = int(os.getenv("RECKON_WEBHOOK_LIMIT_PER_HOUR", "1000"))
    promotion_code_limit_per_hour: int = int(os.getenv("RECKON_PROMOTION_CODE_LIMIT_PER_HOUR", "10"))
    suspicious_after_violations: int = int(os.getenv("RECKON_SUSPICIOUS_AFTER_VIOLATIONS", "5"))
    blocked_after_violations: int = int(os.getenv("RECKON_BLOCKED_AFTER_VIOLATIONS", "25"))

    log_level: str = os.getenv("RECKON_LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Install one root handler; safe to call more than once."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ("Settings", "settings", "configure_logging")
