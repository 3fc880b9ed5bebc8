"""Minimum-interval rate limiter for upstream calls."""

import threading
import time
from dataclasses import dataclass, field

import structlog

from shiptrack.gateway.constants import COMPONENT_GATEWAY
from shiptrack.gateway.metrics import GatewayMetrics
from shiptrack.gateway.protocols import Clock, Sleeper


logger = structlog.get_logger()


@dataclass
class MinIntervalRateLimiter:
    """Global throttle enforcing spacing between upstream calls.

    Keeps a single ``last_request_time`` shared by every key, reflecting
    one upstream quota. Spacing is measured between call starts.

    Attributes:
        min_interval: Minimum seconds between the starts of two calls.
        clock: Monotonic clock.
        sleep: Blocking sleep matching ``clock``.
    """

    min_interval: float
    clock: Clock = time.monotonic
    sleep: Sleeper = time.sleep

    _last_request_time: float | None = field(init=False, default=None)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _wait_count: int = field(init=False, default=0)

    def await_slot(self) -> float:
        """Block until the next call may start, then claim the slot.

        Returns:
            Seconds spent waiting.
        """
        with self._lock:
            waited = 0.0
            if self._last_request_time is not None:
                elapsed = self.clock() - self._last_request_time
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self._wait_count += 1
                    logger.debug(
                        "rate_limit_wait",
                        component=COMPONENT_GATEWAY,
                        subcomponent="rate_limiter",
                        wait_seconds=round(waited, 3),
                    )
                    self.sleep(waited)
            self._last_request_time = self.clock()

        GatewayMetrics.get_instance().record_rate_limit_wait(waited)
        return waited

    @property
    def last_request_time(self) -> float | None:
        """Clock reading at the start of the previous call."""
        return self._last_request_time

    @property
    def wait_count(self) -> int:
        """Number of times a caller had to wait for a slot."""
        return self._wait_count
