"""Single-flight lookup queue in front of the tracking API."""

import threading
import time
from collections import deque
from concurrent.futures import Future
from types import TracebackType

import httpx
import structlog

from shiptrack.gateway.client import FedExTrackingClient
from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.constants import COMPONENT_GATEWAY
from shiptrack.gateway.credentials import CredentialCache
from shiptrack.gateway.errors import (
    GatewayClosedError,
    GatewayError,
    GatewayNotConfiguredError,
    MalformedKeyError,
    NotFoundError,
    RateLimitedError,
    RetriesExhaustedError,
    UpstreamError,
)
from shiptrack.gateway.metrics import GatewayMetrics
from shiptrack.gateway.models import (
    Disposition,
    LookupRequest,
    NormalizedResult,
    QueueStatus,
)
from shiptrack.gateway.protocols import Clock, Sleeper, UpstreamClient
from shiptrack.gateway.rate_limiter import MinIntervalRateLimiter
from shiptrack.gateway.retry import RetryPolicy
from shiptrack.gateway.validation import validate_format


logger = structlog.get_logger()


class TrackingGateway:
    """Serializes tracking lookups through one worker.

    Callers submit keys concurrently and get futures back; a single worker
    thread drains the FIFO queue, so at most one upstream call is in
    flight at any instant and the rate limiter's spacing holds globally.

    Retryable failures are re-enqueued at the tail with a not-before time
    from the retry policy, letting requests behind them make progress
    while the backoff elapses. Fatal failures settle immediately.

    Queue wait time is unbounded: a request may sit behind any number of
    backoff cycles under sustained rate limiting.
    """

    def __init__(
        self,
        config: GatewayConfig,
        client: UpstreamClient,
        rate_limiter: MinIntervalRateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ) -> None:
        """Initialize the gateway.

        Args:
            config: Gateway configuration.
            client: Upstream client performing single lookups.
            rate_limiter: Global throttle (built from config if omitted).
            retry_policy: Retry policy (built from config if omitted).
            clock: Monotonic clock shared with the rate limiter.
            sleep: Blocking sleep matching ``clock``.
        """
        self._config = config
        self._client = client
        self._clock = clock
        self._sleep = sleep
        self._rate_limiter = rate_limiter or MinIntervalRateLimiter(
            min_interval=config.min_interval_seconds,
            clock=clock,
            sleep=sleep,
        )
        self._retry_policy = retry_policy or RetryPolicy.from_config(config)
        self._metrics = GatewayMetrics.get_instance()

        self._pending: deque[LookupRequest] = deque()
        self._is_processing = False
        self._closed = False
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._worker: threading.Thread | None = None
        self._owned_http: httpx.Client | None = None

        self._log = logger.bind(component=COMPONENT_GATEWAY, subcomponent="queue")

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        http_client: httpx.Client | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ) -> "TrackingGateway":
        """Build a gateway wired to the FedEx API.

        Args:
            config: Gateway configuration.
            http_client: HTTP client to use; one is created (and closed
                with the gateway) if omitted.
            clock: Monotonic clock.
            sleep: Blocking sleep matching ``clock``.

        Returns:
            Ready-to-use gateway. Construct once per process and inject it.
        """
        owned = http_client is None
        http = http_client or httpx.Client()
        credentials = CredentialCache(config, http, clock=clock)
        client = FedExTrackingClient(config, credentials, http)
        gateway = cls(config, client, clock=clock, sleep=sleep)
        if owned:
            gateway._owned_http = http
        return gateway

    @property
    def is_configured(self) -> bool:
        """Check whether upstream credentials are configured."""
        return self._config.is_configured

    def submit(self, key: str) -> Future[NormalizedResult]:
        """Enqueue a lookup and return a future for its outcome.

        The future is settled exactly once, with a ``NormalizedResult`` or
        a ``GatewayError``. It may be cancelled until the worker first
        dequeues it.

        Args:
            key: Tracking number to look up.

        Returns:
            Future settled by the worker.

        Raises:
            GatewayClosedError: If the gateway has been closed.
            GatewayNotConfiguredError: If credentials are missing.
        """
        key = key.strip()
        if not self.is_configured:
            raise GatewayNotConfiguredError

        request = LookupRequest(key=key, submitted_at=self._clock())
        if not key:
            request.future.set_exception(MalformedKeyError("Empty tracking number"))
            return request.future

        request.future.add_done_callback(
            lambda future: self._discard_cancelled(request, future)
        )

        with self._lock:
            if self._closed:
                raise GatewayClosedError
            self._pending.append(request)
            pending_count = len(self._pending)
            self._start_locked()

        self._metrics.record_submitted()
        self._log.info("lookup_submitted", key=key, pending=pending_count)
        return request.future

    def lookup(self, key: str, timeout: float | None = None) -> NormalizedResult:
        """Submit a lookup and block until it settles.

        Args:
            key: Tracking number.
            timeout: Seconds to wait for the result, or None for no limit.

        Returns:
            Normalized tracking result.

        Raises:
            GatewayError: The typed failure the lookup settled with.
            TimeoutError: If ``timeout`` elapses first.
        """
        return self.submit(key).result(timeout=timeout)

    def validate_tracking_number(self, key: str, timeout: float | None = None) -> bool:
        """Check a tracking number, upstream when possible.

        Falls back to the local format check when credentials are not
        configured. Otherwise a lookup is made: not-found or rejected keys
        are invalid; any other failure is raised since it says nothing
        about the key.

        Args:
            key: Tracking number.
            timeout: Seconds to wait for the lookup.

        Returns:
            True if the key is valid.
        """
        if not self.is_configured:
            return validate_format(key)

        try:
            self.lookup(key, timeout=timeout)
        except (NotFoundError, MalformedKeyError):
            return False
        return True

    def start(self) -> None:
        """Start the worker if it is idle and work is pending.

        Idempotent: does nothing while a worker is already running.
        """
        with self._lock:
            self._start_locked()

    def queue_status(self) -> QueueStatus:
        """Snapshot of pending work and worker state."""
        with self._lock:
            return QueueStatus(
                pending_count=len(self._pending),
                is_processing=self._is_processing,
            )

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until the queue is drained and the worker has stopped.

        Args:
            timeout: Seconds to wait, or None for no limit.

        Returns:
            True if the gateway went idle within the timeout.
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: not self._is_processing and not self._pending,
                timeout=timeout,
            )

    def close(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop accepting lookups.

        Already-pending lookups are still processed. An HTTP client created
        by ``from_config`` is closed once the worker goes idle.

        Args:
            wait: Whether to wait for pending lookups to settle.
            timeout: Seconds to wait when ``wait`` is True.
        """
        with self._lock:
            self._closed = True
            self._release_http_locked()
        if wait:
            self.wait_idle(timeout=timeout)
        self._log.info("gateway_closed")

    def __enter__(self) -> "TrackingGateway":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit."""
        self.close()

    # ===== Worker =====

    def _start_locked(self) -> None:
        """Start a worker thread. Must be called while holding the lock."""
        if self._is_processing or not self._pending:
            return
        self._is_processing = True
        self._worker = threading.Thread(
            target=self._run,
            name="tracking-gateway-worker",
            daemon=True,
        )
        self._worker.start()
        self._log.debug("worker_started", pending=len(self._pending))

    def _run(self) -> None:
        """Drain the queue until it is empty."""
        while True:
            with self._lock:
                request = self._next_request_locked()
                if request is None:
                    self._is_processing = False
                    self._worker = None
                    self._release_http_locked()
                    self._idle.notify_all()
                    self._log.debug("worker_idle")
                    return
            try:
                self._process(request)
            except Exception as exc:
                self._log.exception("worker_error", key=request.key)
                if not request.future.done():
                    error = UpstreamError(f"Worker error: {exc}", key=request.key)
                    error.__cause__ = exc
                    self._settle_error(request, error)

    def _release_http_locked(self) -> None:
        """Close the owned HTTP client once closed and idle.

        Must be called while holding the lock.
        """
        if self._closed and not self._is_processing and self._owned_http is not None:
            self._owned_http.close()
            self._owned_http = None
            self._log.debug("http_client_closed")

    def _next_request_locked(self) -> LookupRequest | None:
        """Pop the oldest live request. Must be called while holding the lock.

        Returns:
            The next request, or None if nothing is pending.
        """
        while self._pending:
            request = self._pending.popleft()
            future = request.future
            if future.running() or future.set_running_or_notify_cancel():
                return request
            self._log.info("lookup_cancelled", key=request.key)
        return None

    def _process(self, request: LookupRequest) -> None:
        """Make one upstream attempt for a request and settle or requeue it."""
        wait = request.not_before - self._clock()
        if wait > 0:
            self._log.debug("backoff_wait", key=request.key, wait_seconds=wait)
            self._sleep(wait)

        self._rate_limiter.await_slot()

        try:
            result = self._client.fetch(request.key)
        except GatewayError as exc:
            self._handle_failure(request, exc)
        except Exception as exc:  # noqa: BLE001
            error = UpstreamError(f"Unexpected error: {exc}", key=request.key)
            error.__cause__ = exc
            self._handle_failure(request, error)
        else:
            self._metrics.record_success()
            self._log.info(
                "lookup_succeeded",
                key=request.key,
                status=result.status.value,
                attempt=request.attempt,
                queued_seconds=round(self._clock() - request.submitted_at, 3),
            )
            request.future.set_result(result)

    def _handle_failure(self, request: LookupRequest, error: GatewayError) -> None:
        """Apply the retry policy to a failed attempt."""
        if error.key is None:
            error.key = request.key

        if self._retry_policy.classify(error) is Disposition.FATAL:
            self._settle_error(request, error)
            return

        request.attempt += 1
        delay = self._retry_policy.next_delay(request.attempt)
        if delay is None:
            self._metrics.record_exhausted()
            self._log.warning(
                "lookup_retries_exhausted",
                key=request.key,
                attempts=request.attempt,
                last_error=type(error).__name__,
            )
            exhausted = RetriesExhaustedError(error, request.attempt)
            self._settle_error(request, exhausted)
            return

        request.not_before = self._clock() + delay
        self._metrics.record_retry()
        self._log.warning(
            "lookup_retry_scheduled",
            key=request.key,
            attempt=request.attempt,
            max_attempts=self._retry_policy.max_attempts,
            delay_seconds=delay,
            error=type(error).__name__,
            retry_after=(
                error.retry_after if isinstance(error, RateLimitedError) else None
            ),
        )
        with self._lock:
            self._pending.append(request)

    def _settle_error(self, request: LookupRequest, error: GatewayError) -> None:
        """Settle a request's future with a typed error."""
        self._metrics.record_failure(type(error).__name__)
        self._log.warning("lookup_failed", attempt=request.attempt, **error.to_dict())
        request.future.set_exception(error)

    def _discard_cancelled(
        self, request: LookupRequest, future: Future[NormalizedResult]
    ) -> None:
        """Remove a cancelled request from the pending queue."""
        if not future.cancelled():
            return
        with self._lock:
            if request in self._pending:
                self._pending.remove(request)
            self._idle.notify_all()
