"""
Application configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "AltQ"
    app_env: str = "development"  # development, staging, production
    debug: bool = True
    cors_origins: list[str] = [
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",
    ]

    # Database
    database_url: str = "postgresql://localhost:5432/altq"

    # JWT Authentication
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60 * 24 * 7  # 7 days

    # Admin API
    admin_api_key: Optional[str] = None  # Set this for automated admin access

    # Queue timeouts
    queue_timeout_minutes: int = 30
    pending_verification_timeout_minutes: int = 5
    no_show_grace_minutes: int = 15

    # Background job intervals
    enable_background_jobs: bool = True
    queue_timeout_interval_seconds: float = 60
    pending_verification_interval_seconds: float = 60
    no_show_interval_seconds: float = 5 * 60

    # Loyalty program
    loyalty_completion_bonus: int = 25
    loyalty_tier_small_points: int = 50
    loyalty_tier_small_percent: int = 10
    loyalty_tier_large_points: int = 100
    loyalty_tier_large_percent: int = 20

    # Check-in verification
    check_in_auto_approve_radius_meters: int = 100
    check_in_max_radius_meters: int = 1000

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def async_database_url(self) -> str:
        """Database URL with the async driver filled in for plain PostgreSQL URLs."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
