"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LIVE_API_URL = "https://api.coingate.com/v2"
SANDBOX_API_URL = "https://api-sandbox.coingate.com/v2"


class ConfigurationError(Exception):
    """Raised when a merchant setting required for an operation is missing."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # CoinGate Configuration
    coingate_api_auth_token: Optional[str] = Field(
        default=None, description="CoinGate API auth token used for all remote calls"
    )
    coingate_sandbox_mode: bool = Field(
        default=True, description="Route API calls to the sandbox environment"
    )
    coingate_receive_currency: Optional[str] = Field(
        default=None, description="Currency the merchant is settled in (e.g. EUR, BTC)"
    )
    coingate_request_timeout: float = Field(
        default=10.0, gt=0, description="HTTP timeout for CoinGate calls (seconds)"
    )
    coingate_max_retries: int = Field(
        default=3, ge=1, description="Max attempts for retryable CoinGate calls"
    )
    coingate_retry_backoff: float = Field(
        default=0.5, ge=0, description="Base delay for retry backoff (seconds)"
    )
    coingate_verify_callback_token: bool = Field(
        default=True, description="Reject callbacks whose token does not match the payment"
    )

    # Store Configuration
    store_base_url: str = Field(
        default="http://localhost:8000", description="Public base URL of the store"
    )
    store_title: Optional[str] = Field(
        default=None, description="Website display name sent as the order title"
    )
    order_processing_status: str = Field(
        default="processing", description="Default display status for the processing state"
    )
    order_canceled_status: str = Field(
        default="canceled", description="Default display status for the canceled state"
    )

    # Application Configuration
    app_name: str = Field(default="coingate-merchant", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("coingate_receive_currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        """Upper-case currency codes; blank means unset."""
        if v is None or not v.strip():
            return None
        return v.strip().upper()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def coingate_api_base_url(self) -> str:
        """CoinGate endpoint selected by the sandbox flag."""
        return SANDBOX_API_URL if self.coingate_sandbox_mode else LIVE_API_URL

    def require_api_auth_token(self) -> str:
        """Return the API token or raise ConfigurationError."""
        if not self.coingate_api_auth_token:
            raise ConfigurationError("CoinGate API auth token is not configured")
        return self.coingate_api_auth_token

    def require_receive_currency(self) -> str:
        """Return the settlement currency or raise ConfigurationError."""
        if not self.coingate_receive_currency:
            raise ConfigurationError("CoinGate receive currency is not configured")
        return self.coingate_receive_currency


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
