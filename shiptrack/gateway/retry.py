"""Retry policy for failed tracking lookups."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAYS_SECONDS,
)
from shiptrack.gateway.errors import (
    AuthenticationError,
    MalformedKeyError,
    NotFoundError,
    RateLimitedError,
    UpstreamError,
    UpstreamTimeoutError,
)
from shiptrack.gateway.models import Disposition


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Uses a fixed schedule of increasing delays rather than exponential
    backoff with jitter. ``attempt`` always counts failed upstream calls
    for one request, so a request is called at most ``max_attempts`` times.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: Annotated[int, Field(ge=1, le=20)] = DEFAULT_MAX_ATTEMPTS
    delays_seconds: Annotated[tuple[float, ...], Field(min_length=1)] = (
        DEFAULT_RETRY_DELAYS_SECONDS
    )

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "RetryPolicy":
        """Build a policy from gateway configuration.

        Args:
            config: Gateway configuration.

        Returns:
            RetryPolicy with the configured ceiling and schedule.
        """
        return cls(
            max_attempts=config.max_attempts,
            delays_seconds=config.retry_delays_seconds,
        )

    def classify(self, error: BaseException) -> Disposition:
        """Classify a failure as retryable or fatal.

        Args:
            error: The exception raised by the upstream client.

        Returns:
            RETRYABLE for rate limiting and transient transport or server
            failures, FATAL for everything else.
        """
        if isinstance(error, AuthenticationError | NotFoundError | MalformedKeyError):
            return Disposition.FATAL

        if isinstance(error, RateLimitedError | UpstreamTimeoutError):
            return Disposition.RETRYABLE

        if isinstance(error, UpstreamError) and error.retryable_hint:
            return Disposition.RETRYABLE

        return Disposition.FATAL

    def next_delay(self, attempt: int) -> float | None:
        """Delay before the next attempt after ``attempt`` failures.

        Args:
            attempt: Number of failed attempts so far (1-indexed).

        Returns:
            Seconds to wait, or None once the attempt ceiling is reached.
        """
        if attempt >= self.max_attempts:
            return None

        index = min(max(attempt - 1, 0), len(self.delays_seconds) - 1)
        return self.delays_seconds[index]
