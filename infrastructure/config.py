"""Runtime settings loaded from the environment"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the booking API, overridable with BOOKING_* variables"""

    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(default=30, ge=1)

    default_capacity: int = Field(default=1, ge=1)
    dispute_window_days: int = Field(default=7, ge=0)
    max_conflict_retries: int = Field(default=5, ge=1)
    default_currency: str = "AOA"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="BOOKING_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
