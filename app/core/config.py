"""
Application configuration loaded from environment variables.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="Marketplace Chat Sync")
    app_version: str = Field(default="1.0.0")

    # MongoDB
    mongo_url: str = Field(default="mongodb://localhost:27017")
    mongo_db: str = Field(default="marketplace")

    # Change feed; in-process fan-out when unset
    redis_url: Optional[str] = Field(default=None)

    # Identity
    jwt_secret: str = Field(default="change-me")
    jwt_algorithm: str = Field(default="HS256")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    # Unread badge shows "<cap>+" above this value
    unread_display_cap: int = Field(default=9)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
