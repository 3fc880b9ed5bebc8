"""Data models for the tracking gateway."""

from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TrackingStatus(str, Enum):
    """Normalized shipment status.

    Mapped from the upstream's latest status code; anything the mapping
    table does not name is PENDING.
    """

    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"


class Disposition(str, Enum):
    """Retry classification of a failed lookup.

    - RETRYABLE: transient, governed by the attempt ceiling and delays
    - FATAL: surfaced to the caller immediately
    """

    RETRYABLE = "RETRYABLE"
    FATAL = "FATAL"


class TrackingEvent(BaseModel):
    """A single scan event from the upstream tracking history."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: datetime | None = Field(default=None, description="Scan time")
    location: str = Field(default="", description="City, state of the scan")
    description: str = Field(default="", description="Upstream event text")


class NormalizedResult(BaseModel):
    """Tracking lookup result in upstream-independent shape.

    Immutable once produced; ownership transfers to the caller.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(min_length=1, description="Tracking number looked up")
    status: TrackingStatus = Field(default=TrackingStatus.PENDING)
    status_description: str | None = Field(
        default=None, description="Upstream text for the latest status"
    )
    estimated_completion: datetime | None = Field(
        default=None, description="Estimated delivery time"
    )
    actual_delivery: datetime | None = Field(
        default=None, description="Actual delivery time, once delivered"
    )
    last_location: str | None = Field(
        default=None, description="City of the latest scan"
    )
    events: tuple[TrackingEvent, ...] = Field(default_factory=tuple)
    raw_upstream_payload: dict[str, Any] = Field(
        default_factory=dict, description="Full upstream response for diagnostics"
    )


class CachedToken(BaseModel):
    """Bearer token with its expiry on the gateway clock."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: str = Field(min_length=1, repr=False)
    expires_at: float = Field(description="Clock reading after which it is stale")

    def is_valid(self, now: float) -> bool:
        """Check whether the token may still be used.

        Args:
            now: Current clock reading.

        Returns:
            True if the token has not reached its expiry.
        """
        return now < self.expires_at


class QueueStatus(BaseModel):
    """Snapshot of the lookup queue."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pending_count: int = Field(ge=0)
    is_processing: bool

    @property
    def message(self) -> str:
        """Human-readable queue summary."""
        if self.is_processing:
            return f"Processing {self.pending_count} requests..."
        if self.pending_count > 0:
            return f"{self.pending_count} requests queued"
        return "Queue empty"


@dataclass(eq=False)
class LookupRequest:
    """A pending lookup owned by the queue until its future is settled.

    Attributes:
        key: Opaque upstream identifier.
        submitted_at: Clock reading at submission.
        attempt: Number of failed upstream attempts so far.
        not_before: Earliest clock reading for the next attempt.
        future: Future settled exactly once with the outcome.
    """

    key: str
    submitted_at: float
    attempt: int = 0
    not_before: float = 0.0
    future: Future[NormalizedResult] = field(default_factory=Future, repr=False)
