"""Metrics collection for the tracking gateway."""

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock


_metrics_instance: "GatewayMetrics | None" = None
_metrics_lock: Lock = Lock()


@dataclass
class GatewayMetrics:
    """Thread-safe metrics for gateway operations.

    Tracks upstream calls, retries, failures, and time spent waiting on
    the rate limiter. Use get_instance() for singleton access.
    """

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    # Upstream responses by HTTP status (0 = no response)
    upstream_calls_by_status: Counter[int] = field(default_factory=Counter)

    # Settled failures by error type name
    failures_by_type: Counter[str] = field(default_factory=Counter)

    lookups_submitted: int = 0
    lookups_succeeded: int = 0
    retries_scheduled: int = 0
    retries_exhausted: int = 0
    token_refreshes: int = 0
    rate_limit_wait_seconds: float = 0.0

    @classmethod
    def get_instance(cls) -> "GatewayMetrics":
        """Get the singleton instance (thread-safe).

        Returns:
            The shared GatewayMetrics instance.
        """
        global _metrics_instance  # noqa: PLW0603
        if _metrics_instance is None:
            with _metrics_lock:
                if _metrics_instance is None:
                    _metrics_instance = cls()
        return _metrics_instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (for testing)."""
        global _metrics_instance  # noqa: PLW0603
        with _metrics_lock:
            _metrics_instance = None

    def record_submitted(self) -> None:
        """Record a lookup accepted by the queue."""
        with self._lock:
            self.lookups_submitted += 1

    def record_upstream_call(self, status_code: int) -> None:
        """Record an upstream tracking response.

        Args:
            status_code: HTTP status code, or 0 for transport failures.
        """
        with self._lock:
            self.upstream_calls_by_status[status_code] += 1

    def record_success(self) -> None:
        """Record a lookup settled with a result."""
        with self._lock:
            self.lookups_succeeded += 1

    def record_failure(self, error_type: str) -> None:
        """Record a lookup settled with an error.

        Args:
            error_type: Exception class name.
        """
        with self._lock:
            self.failures_by_type[error_type] += 1

    def record_retry(self) -> None:
        """Record a retry being scheduled."""
        with self._lock:
            self.retries_scheduled += 1

    def record_exhausted(self) -> None:
        """Record a request that ran out of attempts."""
        with self._lock:
            self.retries_exhausted += 1

    def record_token_refresh(self) -> None:
        """Record a successful OAuth token fetch."""
        with self._lock:
            self.token_refreshes += 1

    def record_rate_limit_wait(self, seconds: float) -> None:
        """Record time spent waiting for a rate limit slot.

        Args:
            seconds: Seconds waited (may be zero).
        """
        with self._lock:
            self.rate_limit_wait_seconds += seconds

    @property
    def total_upstream_calls(self) -> int:
        """Total upstream tracking calls made."""
        with self._lock:
            return sum(self.upstream_calls_by_status.values())

    def to_dict(self) -> dict[str, int | float | dict[str, int]]:
        """Convert metrics to dictionary.

        Returns:
            Dictionary of metric name to value.
        """
        with self._lock:
            return {
                "lookups_submitted": self.lookups_submitted,
                "lookups_succeeded": self.lookups_succeeded,
                "upstream_calls_by_status": {
                    str(k): v for k, v in self.upstream_calls_by_status.items()
                },
                "failures_by_type": dict(self.failures_by_type),
                "retries_scheduled": self.retries_scheduled,
                "retries_exhausted": self.retries_exhausted,
                "token_refreshes": self.token_refreshes,
                "rate_limit_wait_seconds": round(self.rate_limit_wait_seconds, 3),
            }
