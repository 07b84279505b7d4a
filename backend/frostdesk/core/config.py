# backend/frostdesk/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(
        default="development",
        description="Deployment environment (development, staging, production)",
    )
    is_testing: bool = Field(default=False, description="Set by the test suite")

    # Database
    database_url: str = Field(
        default="sqlite:///./frostdesk.db",
        description="SQLAlchemy URL for the booking database",
    )
    test_database_url: Optional[str] = Field(
        default=None,
        description="Database used by tests; PostgreSQL enables the locking tests",
    )
    db_pool_size: int = Field(default=5, ge=1)
    db_max_overflow: int = Field(default=5, ge=0)
    db_pool_timeout: int = Field(default=5, ge=1, description="Seconds to wait for a connection")
    db_statement_timeout_ms: int = Field(default=15000, ge=0)

    # Calendar provider
    calendar_provider: Literal["google", "fake"] = Field(
        default="fake",
        description="Calendar backend: 'google' for the REST API, 'fake' for in-memory events",
    )
    google_client_id: Optional[str] = Field(default=None)
    google_client_secret: Optional[SecretStr] = Field(default=None)
    google_calendar_api_base: str = Field(default="https://www.googleapis.com/calendar/v3")
    google_token_url: str = Field(default="https://oauth2.googleapis.com/token")
    calendar_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout applied to every calendar HTTP call"
    )
    calendar_token_refresh_margin_seconds: int = Field(default=60, ge=0)

    # Payments
    stripe_secret_key: Optional[SecretStr] = Field(default=None)
    stripe_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout applied to every Stripe HTTP call"
    )

    # Lifecycle
    audit_enabled: bool = Field(default=True)
    proposal_ttl_hours: int = Field(
        default=24, ge=1, description="Proposed bookings older than this are expired"
    )
    expiry_sweep_batch_size: int = Field(default=200, ge=1)

    # Celery
    redis_url: str = Field(default="redis://localhost:6379/0")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return (value or "development").strip().lower()

    def get_database_url(self) -> str:
        """Return the database URL for the current mode."""
        if (self.is_testing or is_running_tests()) and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
