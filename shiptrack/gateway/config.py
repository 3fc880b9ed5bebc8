"""Configuration model for the tracking gateway."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from shiptrack.gateway.constants import (
    DEFAULT_AUTH_TIMEOUT_SECONDS,
    DEFAULT_BASE_URL,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MIN_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_DELAYS_SECONDS,
    DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS,
)


class GatewayConfig(BaseModel):
    """Configuration for the FedEx tracking gateway.

    Central configuration for credentials, pacing, retries, and timeouts.
    Built from environment settings; see ``shiptrack.settings``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: Annotated[str, Field(min_length=1)] = DEFAULT_BASE_URL
    client_id: SecretStr | None = None
    client_secret: SecretStr | None = None
    min_interval_seconds: Annotated[float, Field(ge=0.0, le=3600.0)] = (
        DEFAULT_MIN_INTERVAL_SECONDS
    )
    max_attempts: Annotated[int, Field(ge=1, le=20)] = DEFAULT_MAX_ATTEMPTS
    retry_delays_seconds: tuple[float, ...] = DEFAULT_RETRY_DELAYS_SECONDS
    request_timeout_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = (
        DEFAULT_REQUEST_TIMEOUT_SECONDS
    )
    auth_timeout_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = (
        DEFAULT_AUTH_TIMEOUT_SECONDS
    )
    token_safety_margin_seconds: Annotated[float, Field(ge=0.0, le=3600.0)] = (
        DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended."""
        return v.rstrip("/")

    @field_validator("retry_delays_seconds")
    @classmethod
    def validate_delays(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        """Require a non-empty schedule of non-negative delays."""
        if not v:
            msg = "retry_delays_seconds must contain at least one delay"
            raise ValueError(msg)
        if any(delay < 0 for delay in v):
            msg = "retry_delays_seconds must not contain negative delays"
            raise ValueError(msg)
        return v

    @property
    def is_configured(self) -> bool:
        """Check whether both upstream credentials are present."""
        return bool(
            self.client_id
            and self.client_secret
            and self.client_id.get_secret_value()
            and self.client_secret.get_secret_value()
        )
