"""Configuration management for the receipt core."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Core settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Local store
    database_url: str = Field(default="sqlite:///./priceadjust.db")

    # Remote receipt service
    remote_base_url: str = Field(default="http://localhost:8000/api")
    remote_timeout_seconds: float = Field(default=30.0, gt=0)
    upload_field_name: str = Field(default="receipt_file")

    # Data quality
    total_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0)

    # Analytics
    potential_savings_threshold: Decimal = Field(default=Decimal("50.00"))
    potential_savings_rate: Decimal = Field(default=Decimal("0.15"))
    top_items_limit: int = Field(default=10, gt=0)
    trailing_months: int = Field(default=6, gt=0)
    trailing_weeks: int = Field(default=12, gt=0)

    environment: str = Field(default="development")

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that production talks to the remote service over TLS."""
        if self.environment == "production":
            if self.remote_base_url.startswith("http://"):
                raise ValueError("REMOTE_BASE_URL must use https in production")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
