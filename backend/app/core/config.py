# backend/app/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import BRAND_NAME


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Process-level configuration for the CleanConnect backend."""

    app_name: str = Field(default=f"{BRAND_NAME} API")
    environment: str = Field(
        default="development", description="development | staging | production"
    )
    is_testing: bool = False  # Set to True when running tests

    # Persistence
    database_url_raw: str = Field(
        default="sqlite:///./cleanconnect.db",
        alias="database_url",
        description="SQLAlchemy URL for the primary database",
    )
    database_pool_size: int = Field(default=20, ge=1)
    database_max_overflow: int = Field(default=10, ge=0)

    # Redis (locks + Celery broker)
    redis_url: str = "redis://localhost:6379"
    redis_key_namespace: str = Field(default="cleanconnect")

    # Per-booking serialization
    booking_lock_backend: Literal["redis", "local"] = Field(
        default="redis",
        description="redis uses SET NX EX; local uses an in-process mutex per booking",
    )
    booking_lock_ttl_seconds: int = Field(default=90, ge=1)

    # Stripe
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_currency: str = Field(default="usd", description="Default currency for payments")

    # Platform settings cache (staleness tolerance for admin-edited settings)
    platform_settings_cache_ttl_seconds: int = Field(default=30, ge=0)

    # Background jobs
    task_dispatch_enabled: bool = Field(
        default=True, description="Disable to keep Celery out of request paths (tests, scripts)"
    )
    no_show_sweep_interval_seconds: int = Field(default=60, ge=5)
    auto_release_sweep_interval_seconds: int = Field(default=600, ge=30)
    no_show_capture_retry_interval_seconds: int = Field(default=900, ge=60)
    no_show_capture_max_attempts: int = Field(default=5, ge=1)

    # Notifications
    appeal_reviewer_user_id: str = Field(
        default="admin", description="Inbox that receives new charge appeals"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, v: str) -> str:
        return (v or "development").strip().lower()

    @property
    def database_url(self) -> str:
        return self.database_url_raw

    def get_database_url(self) -> str:
        """Get the database URL for the current process."""
        return self.database_url_raw

    @property
    def stripe_api_key(self) -> Optional[str]:
        value = self.stripe_secret_key.get_secret_value() if self.stripe_secret_key else ""
        return value or None


settings = Settings()

if is_running_tests():
    settings.is_testing = True
