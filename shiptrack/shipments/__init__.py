"""Shipment records, bulk import, scan reconciliation, and refresh."""

from shiptrack.shipments.bulk_import import (
    BulkImportResult,
    ImportRowError,
    normalize_status,
    parse_bulk_import,
)
from shiptrack.shipments.errors import (
    ShipmentNotFoundError,
    StoreConnectionError,
    StoreError,
)
from shiptrack.shipments.models import Shipment, SyncLog, SyncSource
from shiptrack.shipments.reconcile import ReconciliationReport, reconcile
from shiptrack.shipments.refresh import should_refresh
from shiptrack.shipments.store import ShipmentStore
from shiptrack.shipments.tracker import RefreshOutcome, ShipmentTracker


__all__ = [
    # Models
    "Shipment",
    "SyncLog",
    "SyncSource",
    # Store
    "ShipmentStore",
    # Errors
    "ShipmentNotFoundError",
    "StoreConnectionError",
    "StoreError",
    # Import and reconciliation
    "BulkImportResult",
    "ImportRowError",
    "ReconciliationReport",
    "normalize_status",
    "parse_bulk_import",
    "reconcile",
    # Refresh
    "RefreshOutcome",
    "ShipmentTracker",
    "should_refresh",
]
