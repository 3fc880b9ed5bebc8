"""Error taxonomy for the tracking gateway.

Every error a caller can receive from a lookup future is a ``GatewayError``.
The retry policy decides which ones are transient; the client and the
credential cache only ever report.
"""


class GatewayError(Exception):
    """Base exception for all gateway errors.

    Attributes:
        key: Lookup key the error relates to, if any.
        message: Human-readable error message.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        """Initialize the gateway error.

        Args:
            message: Human-readable error message.
            key: Lookup key the error relates to.
        """
        super().__init__(message)
        self.message = message
        self.key = key

    def to_dict(self) -> dict[str, str | int | bool | None]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "key": self.key,
        }


class AuthenticationError(GatewayError):
    """Upstream rejected the credentials or the token call failed."""


class UpstreamError(GatewayError):
    """Non-2xx response or transport failure from the upstream API.

    Attributes:
        status_code: HTTP status code, or 0 for transport failures.
        retryable_hint: Whether the failure looks transient.
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        status_code: int = 0,
        retryable_hint: bool = False,
    ) -> None:
        """Initialize the upstream error.

        Args:
            message: Human-readable error message.
            key: Lookup key the error relates to.
            status_code: HTTP status code, or 0 when no response arrived.
            retryable_hint: Whether the failure looks transient.
        """
        super().__init__(message, key=key)
        self.status_code = status_code
        self.retryable_hint = retryable_hint

    def to_dict(self) -> dict[str, str | int | bool | None]:
        """Convert error to dictionary for logging/serialization."""
        data = super().to_dict()
        data["status_code"] = self.status_code
        data["retryable_hint"] = self.retryable_hint
        return data


class RateLimitedError(UpstreamError):
    """Upstream signalled rate limiting (HTTP 429).

    Attributes:
        retry_after: Seconds suggested by the Retry-After header, if any.
    """

    def __init__(
        self,
        message: str = "Rate limited (429 Too Many Requests)",
        key: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, key=key, status_code=429, retryable_hint=True)
        self.retry_after = retry_after


class UpstreamTimeoutError(UpstreamError):
    """The tracking request timed out."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message, key=key, status_code=0, retryable_hint=True)


class NotFoundError(GatewayError):
    """Upstream does not recognize the tracking number."""


class MalformedKeyError(GatewayError):
    """Upstream rejected the tracking number as malformed."""


class RetriesExhaustedError(GatewayError):
    """A retryable failure persisted through every allowed attempt.

    Attributes:
        last_error: The final retryable error, kept for diagnostics.
        attempts: Number of upstream attempts made.
    """

    def __init__(self, last_error: GatewayError, attempts: int) -> None:
        """Initialize the error.

        Args:
            last_error: The final retryable error.
            attempts: Number of upstream attempts made.
        """
        super().__init__(
            f"Gave up after {attempts} attempts. Last error: {last_error}",
            key=last_error.key,
        )
        self.last_error = last_error
        self.attempts = attempts

    def to_dict(self) -> dict[str, str | int | bool | None]:
        """Convert error to dictionary for logging/serialization."""
        data = super().to_dict()
        data["attempts"] = self.attempts
        data["last_error_type"] = type(self.last_error).__name__
        return data


class GatewayNotConfiguredError(GatewayError):
    """Upstream credentials are not set, so lookups cannot run."""

    def __init__(self, message: str = "FedEx API credentials not configured") -> None:
        super().__init__(message)


class GatewayClosedError(GatewayError):
    """The gateway has been closed and accepts no new lookups."""

    def __init__(self, message: str = "Gateway is closed") -> None:
        super().__init__(message)
