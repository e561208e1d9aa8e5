"""
Centralized configuration using Pydantic BaseSettings.
All environment variables are optional to prevent application startup failure.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Normalized tiers
TIER_FREE = "free"
TIER_PRO = "pro"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Hosted auth provider (JWT access tokens)
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_audience: Optional[str] = Field(default="authenticated", alias="JWT_AUDIENCE")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_pro_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRO_PRICE_ID")
    stripe_pro_yearly_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRO_YEARLY_PRICE_ID")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Free tier quota
    free_daily_query_limit: int = Field(default=3, alias="FREE_DAILY_QUERY_LIMIT")
    quota_timezone: Optional[str] = Field(default=None, alias="QUOTA_TIMEZONE")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
