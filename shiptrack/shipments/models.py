"""Data models for shipments and sync logs."""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class SyncSource(str, Enum):
    """Origin of a sync log entry."""

    FEDEX = "fedex"
    IMPORT = "import"


class Shipment(BaseModel):
    """An expected shipment as stored in the shipments table.

    ``status`` holds either the normalized tracking status once the
    shipment has been refreshed, or the text it was imported with.
    """

    model_config = ConfigDict(extra="forbid")

    tracking_number: Annotated[str, Field(min_length=1)]
    status: str = "pending"
    scheduled_delivery: str | None = None
    shipper_name: str | None = None
    shipper_company: str | None = None
    recipient_name: str | None = None
    recipient_company: str | None = None
    master_tracking_number: str | None = None
    package_count: Annotated[int, Field(ge=0)] = 1
    package_type: str | None = None
    package_weight: str | None = None
    total_weight: str | None = None
    direction: str | None = None
    service_type: str | None = None
    child_tracking_numbers: list[str] = Field(default_factory=list)
    not_scanned: bool = False
    manually_completed: bool = False
    last_update: datetime | None = None
    tracking_payload: str | None = Field(
        default=None, description="JSON of the last normalized tracking result"
    )

    @property
    def scan_numbers(self) -> list[str]:
        """Numbers physically scanned for this shipment.

        Child numbers when the shipment has them, else its own number.
        """
        return list(self.child_tracking_numbers) or [self.tracking_number]


class SyncLog(BaseModel):
    """Record of one sync attempt for a tracking number."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: SyncSource
    tracking_number: str | None = None
    success: bool
    error_message: str | None = None
    response_data: str | None = None
