import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Queue
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Caller auth (Supabase-issued JWTs)
    SUPABASE_JWT_SECRET: Optional[str] = None

    # Reviewer access
    ADMIN_KEY: Optional[str] = None  # Legacy shared key
    ADMIN_AUTH_MODE: str = "hybrid"  # "jwt" | "legacy" | "hybrid"
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"

    # Notifications
    NOTIFICATIONS_ENABLED: bool = False
    NOTIFICATIONS_QUEUE: str = "notifications"
    NOTIFICATION_MAX_RETRIES: int = 3
    NOTIFICATION_RETRY_INTERVALS: str = "30,120,600"  # seconds, comma-separated
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Hodos <noreply@hodos.app>"
    APP_BASE_URL: str = "http://localhost:5173"

    # Subscription lifecycle
    SUBSCRIPTION_TERM_DAYS: int = 30
    SUBSCRIPTION_GRACE_DAYS: int = 7
    EXPIRY_WARNING_DAYS: int = 3
    SWEEP_LOOP_SECONDS: int = 3600

    # Create tables + seed plans on startup (local dev)
    AUTO_MIGRATE: bool = False

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def retry_intervals(settings_obj: Optional[Settings] = None) -> list[int]:
    """Parse NOTIFICATION_RETRY_INTERVALS, falling back to the default schedule."""
    cfg = settings_obj or settings
    raw = cfg.NOTIFICATION_RETRY_INTERVALS or ""
    try:
        values = [int(x.strip()) for x in raw.split(",") if x.strip()]
        return values or [30, 120, 600]
    except ValueError:
        return [30, 120, 600]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("hodos")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "SUPABASE_JWT_SECRET",
    ]
    if getattr(cfg, "NOTIFICATIONS_ENABLED", False):
        required_keys.append("RESEND_API_KEY")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
