from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "test", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    SITE_NAME: str = "Pawtraits"
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "https://pawtraits.co.uk",
        "https://www.pawtraits.co.uk",
    ]

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Supabase auth
    # Placeholder values keep local/test runs working without real credentials.
    SUPABASE_URL: str = "http://localhost"
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"
    SERVICE_ROLE_JWT_SECRET: str = "test-service-role-secret"

    # Stripe
    STRIPE_WEBHOOK_SECRET: str = "whsec_test"
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Referral program
    REFERRAL_DISCOUNT_PERCENT: Decimal = Decimal("10.00")
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("10.00")
    CUSTOMER_CREDIT_RATE: Decimal = Decimal("10.00")

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    PUBLIC_RATE_LIMIT_STORAGE_URI: str = "async+memory://"
    PUBLIC_RATE_LIMIT_MAX_REQUESTS: int = 3
    PUBLIC_RATE_LIMIT_WINDOW_SECONDS: int = 3600

    # Gemini image generation
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash-image-preview"
    GEMINI_API_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TIMEOUT_SECONDS: float = 120.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
