"""Configuration settings for the month-end review service."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

QBO_PRODUCTION_URL = "https://quickbooks.api.intuit.com"
QBO_SANDBOX_URL = "https://sandbox-quickbooks.api.intuit.com"


class Settings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # QuickBooks Online API
    qbo_env: Literal["sandbox", "production"] = Field(
        default="sandbox", validation_alias="QBO_ENV"
    )
    qbo_base_url: str | None = Field(default=None, validation_alias="QBO_BASE_URL")
    qbo_minor_version: str = Field(default="65", validation_alias="QBO_MINOR_VERSION")
    qbo_timeout: float = Field(default=30.0, validation_alias="QBO_TIMEOUT")
    qbo_client_id: str = Field(default="", validation_alias="QBO_CLIENT_ID")
    qbo_client_secret: SecretStr = Field(
        default=SecretStr(""), validation_alias="QBO_CLIENT_SECRET"
    )
    qbo_token_url: str = Field(
        default="https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
        validation_alias="QBO_TOKEN_URL",
    )

    # Static credential for scripts and the CLI
    qbo_access_token: SecretStr | None = Field(
        default=None, validation_alias="QBO_ACCESS_TOKEN"
    )
    qbo_realm_id: str | None = Field(default=None, validation_alias="QBO_REALM_ID")

    # Storage
    database_path: str = Field(default="monthend.db", validation_alias="DATABASE_PATH")

    # Accrual detection tuning
    accrual_noise_floor: float = Field(default=10.0, validation_alias="ACCRUAL_NOISE_FLOOR")
    accrual_present_tolerance: float = Field(
        default=0.10, validation_alias="ACCRUAL_PRESENT_TOLERANCE"
    )
    accrual_debug_example_limit: int = Field(
        default=5, validation_alias="ACCRUAL_DEBUG_EXAMPLE_LIMIT"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    @property
    def qbo_host(self) -> str:
        """Base host for the configured QBO environment."""
        if self.qbo_base_url:
            return self.qbo_base_url.rstrip("/")
        if self.qbo_env == "production":
            return QBO_PRODUCTION_URL
        return QBO_SANDBOX_URL


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
