"""Rate-limited, single-flight gateway to the FedEx tracking API.

This module provides:
- OAuth client-credentials token caching
- A global minimum-interval rate limiter
- A fixed-schedule retry policy with typed error classification
- A single-worker FIFO queue returning futures to concurrent callers
- Offline format checks and scanned-barcode extraction
"""

from shiptrack.gateway.client import FedExTrackingClient, parse_track_response
from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.credentials import CredentialCache
from shiptrack.gateway.errors import (
    AuthenticationError,
    GatewayClosedError,
    GatewayError,
    GatewayNotConfiguredError,
    MalformedKeyError,
    NotFoundError,
    RateLimitedError,
    RetriesExhaustedError,
    UpstreamError,
    UpstreamTimeoutError,
)
from shiptrack.gateway.metrics import GatewayMetrics
from shiptrack.gateway.models import (
    CachedToken,
    Disposition,
    LookupRequest,
    NormalizedResult,
    QueueStatus,
    TrackingEvent,
    TrackingStatus,
)
from shiptrack.gateway.protocols import UpstreamClient
from shiptrack.gateway.queue import TrackingGateway
from shiptrack.gateway.rate_limiter import MinIntervalRateLimiter
from shiptrack.gateway.retry import RetryPolicy
from shiptrack.gateway.validation import (
    NeighborProbeResult,
    ParsedTrackingNumber,
    extract_tracking_number,
    parse_scanned_numbers,
    probe_neighbors,
    validate_format,
)


__all__ = [
    # Queue
    "TrackingGateway",
    # Components
    "CredentialCache",
    "FedExTrackingClient",
    "MinIntervalRateLimiter",
    "RetryPolicy",
    "UpstreamClient",
    "parse_track_response",
    # Config
    "GatewayConfig",
    # Models
    "CachedToken",
    "Disposition",
    "LookupRequest",
    "NormalizedResult",
    "QueueStatus",
    "TrackingEvent",
    "TrackingStatus",
    # Errors
    "AuthenticationError",
    "GatewayClosedError",
    "GatewayError",
    "GatewayNotConfiguredError",
    "MalformedKeyError",
    "NotFoundError",
    "RateLimitedError",
    "RetriesExhaustedError",
    "UpstreamError",
    "UpstreamTimeoutError",
    # Metrics
    "GatewayMetrics",
    # Validation
    "NeighborProbeResult",
    "ParsedTrackingNumber",
    "extract_tracking_number",
    "parse_scanned_numbers",
    "probe_neighbors",
    "validate_format",
]
