"""Refresh stored shipments through the tracking gateway."""

from concurrent.futures import Future
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from shiptrack.gateway.errors import GatewayError
from shiptrack.gateway.models import NormalizedResult
from shiptrack.gateway.queue import TrackingGateway
from shiptrack.shipments.models import Shipment, SyncLog, SyncSource
from shiptrack.shipments.refresh import should_refresh
from shiptrack.shipments.store import ShipmentStore


logger = structlog.get_logger()


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of refreshing one shipment.

    Attributes:
        tracking_number: Shipment that was considered.
        refreshed: Whether a lookup was made and succeeded.
        skipped: Whether the refresh policy said it was not due.
        shipment: Shipment as stored after the refresh.
        error: Failure message when the lookup failed.
    """

    tracking_number: str
    refreshed: bool
    skipped: bool
    shipment: Shipment
    error: str | None = None


class ShipmentTracker:
    """Keeps stored shipments current using gateway lookups.

    Lookups go through the shared gateway, so a batch refresh submits
    every due shipment at once and lets the gateway pace the calls. All
    store writes happen on the calling thread.
    """

    def __init__(self, store: ShipmentStore, gateway: TrackingGateway) -> None:
        """Initialize the tracker.

        Args:
            store: Connected shipment store.
            gateway: Tracking gateway used for lookups.
        """
        self._store = store
        self._gateway = gateway
        self._log = logger.bind(component="shipments", subcomponent="tracker")

    def refresh(
        self,
        tracking_number: str,
        force: bool = False,
        timeout: float | None = None,
    ) -> RefreshOutcome:
        """Refresh one shipment if it is due.

        Args:
            tracking_number: Stored shipment to refresh.
            force: Refresh even if the policy says it is not due.
            timeout: Seconds to wait for the lookup.

        Returns:
            Refresh outcome.

        Raises:
            ShipmentNotFoundError: If no shipment has this number.
        """
        shipment = self._store.require_shipment(tracking_number)
        if not force and not should_refresh(shipment):
            return self._skipped(shipment)

        future = self._gateway.submit(shipment.tracking_number)
        return self._collect(shipment, future, timeout)

    def refresh_all(
        self,
        force: bool = False,
        timeout: float | None = None,
    ) -> list[RefreshOutcome]:
        """Refresh every due shipment.

        Args:
            force: Refresh every shipment regardless of the policy.
            timeout: Seconds to wait for each lookup.

        Returns:
            One outcome per stored shipment, in tracking number order.
        """
        now = datetime.now(UTC)
        shipments = self._store.list_shipments()
        due = [s for s in shipments if force or should_refresh(s, now)]

        self._log.info(
            "refresh_all_started",
            total=len(shipments),
            due=len(due),
            force=force,
        )

        futures = {
            s.tracking_number: self._gateway.submit(s.tracking_number) for s in due
        }

        outcomes: list[RefreshOutcome] = []
        for shipment in shipments:
            future = futures.get(shipment.tracking_number)
            if future is None:
                outcomes.append(self._skipped(shipment))
            else:
                outcomes.append(self._collect(shipment, future, timeout))

        self._log.info(
            "refresh_all_complete",
            refreshed=sum(1 for o in outcomes if o.refreshed),
            skipped=sum(1 for o in outcomes if o.skipped),
            failed=sum(1 for o in outcomes if o.error is not None),
        )
        return outcomes

    def _skipped(self, shipment: Shipment) -> RefreshOutcome:
        self._log.debug(
            "refresh_skipped",
            tracking_number=shipment.tracking_number,
            status=shipment.status,
        )
        return RefreshOutcome(
            tracking_number=shipment.tracking_number,
            refreshed=False,
            skipped=True,
            shipment=shipment,
        )

    def _collect(
        self,
        shipment: Shipment,
        future: Future[NormalizedResult],
        timeout: float | None,
    ) -> RefreshOutcome:
        """Wait for a lookup and record its outcome."""
        tracking_number = shipment.tracking_number
        try:
            result = future.result(timeout=timeout)
        except TimeoutError:
            # Drops the lookup if the worker has not picked it up yet
            future.cancel()
            return self._failed(
                shipment, "TimeoutError", f"Lookup timed out after {timeout}s"
            )
        except GatewayError as exc:
            return self._failed(shipment, type(exc).__name__, str(exc))

        updated = self._store.apply_tracking_result(tracking_number, result)
        self._store.record_sync_log(
            SyncLog(
                source=SyncSource.FEDEX,
                tracking_number=tracking_number,
                success=True,
                response_data=updated.tracking_payload,
            )
        )
        self._log.info(
            "shipment_refreshed",
            tracking_number=tracking_number,
            status=updated.status,
        )
        return RefreshOutcome(
            tracking_number=tracking_number,
            refreshed=True,
            skipped=False,
            shipment=updated,
        )

    def _failed(
        self, shipment: Shipment, error_type: str, message: str
    ) -> RefreshOutcome:
        """Record a failed lookup and build its outcome."""
        tracking_number = shipment.tracking_number
        self._store.record_sync_log(
            SyncLog(
                source=SyncSource.FEDEX,
                tracking_number=tracking_number,
                success=False,
                error_message=message,
            )
        )
        self._log.warning(
            "refresh_failed",
            tracking_number=tracking_number,
            error_type=error_type,
            error=message,
        )
        return RefreshOutcome(
            tracking_number=tracking_number,
            refreshed=False,
            skipped=False,
            shipment=shipment,
            error=message,
        )
