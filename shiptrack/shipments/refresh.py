"""Decide when a stored shipment is due for a tracking refresh."""

from datetime import UTC, datetime, timedelta

from shiptrack.gateway.models import TrackingStatus
from shiptrack.shipments.models import Shipment


# Minimum age of the last update before a refresh, by status
REFRESH_INTERVALS: dict[str, timedelta] = {
    TrackingStatus.OUT_FOR_DELIVERY.value: timedelta(minutes=30),
    TrackingStatus.IN_TRANSIT.value: timedelta(hours=2),
    TrackingStatus.PENDING.value: timedelta(hours=1),
    TrackingStatus.EXCEPTION.value: timedelta(hours=1),
}

# Statuses that never change again
FINAL_STATUSES = frozenset({TrackingStatus.DELIVERED.value})


def should_refresh(
    shipment: Shipment | None,
    now: datetime | None = None,
) -> bool:
    """Check whether a shipment's tracking data should be fetched again.

    Args:
        shipment: Stored shipment, or None if it is not stored yet.
        now: Current time (defaults to the current UTC time).

    Returns:
        True if the shipment should be looked up.
    """
    if shipment is None or shipment.last_update is None:
        return True

    if shipment.manually_completed or shipment.status in FINAL_STATUSES:
        return False

    interval = REFRESH_INTERVALS.get(shipment.status)
    if interval is None:
        return True

    now = now or datetime.now(UTC)
    last_update = shipment.last_update
    if last_update.tzinfo is None:
        last_update = last_update.replace(tzinfo=UTC)
    return now - last_update >= interval
