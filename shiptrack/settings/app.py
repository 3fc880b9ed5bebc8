"""Application settings powered by Pydantic BaseSettings."""

from pathlib import Path

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.constants import (
    DEFAULT_AUTH_TIMEOUT_SECONDS,
    DEFAULT_BASE_URL,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MIN_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_DELAYS_SECONDS,
    DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS,
)


class AppSettings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    fedex_api_key: SecretStr | None = Field(
        default=None, validation_alias="FEDEX_API_KEY"
    )
    fedex_api_secret: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("FEDEX_API_SECRET", "FEDEX_SECRET_KEY"),
    )
    fedex_base_url: str = Field(
        default=DEFAULT_BASE_URL, validation_alias="FEDEX_BASE_URL"
    )
    fedex_min_request_interval_seconds: float = Field(
        default=DEFAULT_MIN_INTERVAL_SECONDS,
        validation_alias="FEDEX_MIN_REQUEST_INTERVAL_SECONDS",
    )
    fedex_max_attempts: int = Field(
        default=DEFAULT_MAX_ATTEMPTS, validation_alias="FEDEX_MAX_ATTEMPTS"
    )
    fedex_retry_delays_seconds: tuple[float, ...] = Field(
        default=DEFAULT_RETRY_DELAYS_SECONDS,
        validation_alias="FEDEX_RETRY_DELAYS_SECONDS",
    )
    fedex_request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        validation_alias="FEDEX_REQUEST_TIMEOUT_SECONDS",
    )
    fedex_auth_timeout_seconds: float = Field(
        default=DEFAULT_AUTH_TIMEOUT_SECONDS,
        validation_alias="FEDEX_AUTH_TIMEOUT_SECONDS",
    )
    fedex_token_safety_margin_seconds: float = Field(
        default=DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS,
        validation_alias="FEDEX_TOKEN_SAFETY_MARGIN_SECONDS",
    )
    db_path: Path = Field(
        default=Path("state/shiptrack.sqlite"), validation_alias="SHIPTRACK_DB_PATH"
    )

    def gateway_config(self) -> GatewayConfig:
        """Build the validated gateway configuration."""
        return GatewayConfig(
            base_url=self.fedex_base_url,
            client_id=self.fedex_api_key,
            client_secret=self.fedex_api_secret,
            min_interval_seconds=self.fedex_min_request_interval_seconds,
            max_attempts=self.fedex_max_attempts,
            retry_delays_seconds=self.fedex_retry_delays_seconds,
            request_timeout_seconds=self.fedex_request_timeout_seconds,
            auth_timeout_seconds=self.fedex_auth_timeout_seconds,
            token_safety_margin_seconds=self.fedex_token_safety_margin_seconds,
        )


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()
