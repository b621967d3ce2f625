"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    africastalking_username: str = Field(..., alias="AFRICASTALKING_USERNAME")
    africastalking_api_key: str = Field(..., alias="AFRICASTALKING_API_KEY")
    africastalking_base_url: str = Field(
        default="https://api.africastalking.com/version1",
        alias="AFRICASTALKING_BASE_URL",
    )
    # Utility SMS service number that receives BAL/BUY/UNITS/LAST commands.
    kplc_short_code: str = Field(default="95551", alias="KPLC_SHORT_CODE")
    database_path: Path = Field(default=Path("aurora.db"), alias="DATABASE_PATH")
    sms_poll_interval_seconds: float = Field(default=2.0, gt=0, alias="SMS_POLL_INTERVAL_SECONDS")
    sms_inquiry_timeout_seconds: float = Field(default=45.0, gt=0, alias="SMS_INQUIRY_TIMEOUT_SECONDS")
    sms_purchase_timeout_seconds: float = Field(default=60.0, gt=0, alias="SMS_PURCHASE_TIMEOUT_SECONDS")
    request_timeout_seconds: float = Field(default=30.0, gt=0, alias="REQUEST_TIMEOUT_SECONDS")
    reference_prefix: str = Field(default="SMS", alias="REFERENCE_PREFIX")
    fallback_balance_min: float = Field(default=100.0, ge=0, alias="FALLBACK_BALANCE_MIN")
    fallback_balance_max: float = Field(default=500.0, ge=0, alias="FALLBACK_BALANCE_MAX")
    fallback_units_min: float = Field(default=10.0, ge=0, alias="FALLBACK_UNITS_MIN")
    fallback_units_max: float = Field(default=100.0, ge=0, alias="FALLBACK_UNITS_MAX")
    inbox_retention_days: int = Field(default=30, gt=0, alias="INBOX_RETENTION_DAYS")

    @model_validator(mode="after")
    def _check_ranges(self) -> Settings:
        if self.fallback_balance_min > self.fallback_balance_max:
            raise ValueError("FALLBACK_BALANCE_MIN must not exceed FALLBACK_BALANCE_MAX")
        if self.fallback_units_min > self.fallback_units_max:
            raise ValueError("FALLBACK_UNITS_MIN must not exceed FALLBACK_UNITS_MAX")
        return self


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()
