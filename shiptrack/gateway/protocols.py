"""Protocol interfaces for the tracking gateway."""

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from shiptrack.gateway.models import NormalizedResult


# Monotonic clock in seconds and a matching blocking sleep.
Clock = Callable[[], float]
Sleeper = Callable[[float], None]


@runtime_checkable
class UpstreamClient(Protocol):
    """Protocol for clients that perform one tracking lookup.

    Any client implementing ``fetch`` can be driven by the gateway queue,
    which lets tests substitute scripted fakes for the FedEx client.
    """

    def fetch(self, key: str) -> NormalizedResult:
        """Look up one key upstream.

        Args:
            key: Opaque upstream identifier.

        Returns:
            Normalized tracking result.

        Raises:
            GatewayError: On any failure; never retried by the client.
        """
        ...
