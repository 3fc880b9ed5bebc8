"""Deterministic clock for gateway tests."""

import threading


class FakeClock:
    """Monotonic clock whose sleep advances time instantly.

    Pass the instance as ``clock`` and its ``sleep`` method as ``sleep``.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self._now = start
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self._now += max(seconds, 0.0)

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds
