"""Tests for refreshing stored shipments through the gateway."""

import threading
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.errors import NotFoundError
from shiptrack.gateway.models import TrackingStatus
from shiptrack.gateway.queue import TrackingGateway
from shiptrack.shipments.errors import ShipmentNotFoundError
from shiptrack.shipments.models import Shipment, SyncSource
from shiptrack.shipments.store import ShipmentStore
from shiptrack.shipments.tracker import ShipmentTracker
from tests.helpers.clock import FakeClock
from tests.helpers.upstream import ScriptedUpstream


WAIT = 5.0
UNKNOWN = "404404404404"


@pytest.fixture
def store(tmp_path: Path) -> Generator[ShipmentStore]:
    """Create a connected shipment store."""
    with ShipmentStore(tmp_path / "shipments.sqlite") as store:
        yield store


@pytest.fixture
def upstream() -> ScriptedUpstream:
    """Upstream that fails for one unknown number."""
    return ScriptedUpstream(FakeClock(), {UNKNOWN: [NotFoundError("unknown")]})


@pytest.fixture
def gateway(upstream: ScriptedUpstream) -> Generator[TrackingGateway]:
    """Gateway in front of the scripted upstream."""
    clock = FakeClock()
    config = GatewayConfig(
        base_url="https://fedex.test",
        client_id="client-id",
        client_secret="client-secret",
    )
    with TrackingGateway(config, upstream, clock=clock, sleep=clock.sleep) as gateway:
        yield gateway


@pytest.fixture
def tracker(store: ShipmentStore, gateway: TrackingGateway) -> ShipmentTracker:
    """Tracker wired to the store and gateway."""
    return ShipmentTracker(store, gateway)


def _delivered(tracking_number: str) -> Shipment:
    return Shipment(
        tracking_number=tracking_number,
        status="delivered",
        last_update=datetime(2024, 3, 1, tzinfo=UTC),
    )


class TestRefresh:
    """Tests for refreshing a single shipment."""

    def test_due_shipment_is_refreshed(
        self,
        store: ShipmentStore,
        tracker: ShipmentTracker,
        upstream: ScriptedUpstream,
    ) -> None:
        """Test a never-updated shipment is looked up and stored."""
        store.upsert_shipment(Shipment(tracking_number="111111111111"))

        outcome = tracker.refresh("111111111111", timeout=WAIT)

        assert outcome.refreshed
        assert not outcome.skipped
        assert outcome.error is None
        assert outcome.shipment.status == TrackingStatus.IN_TRANSIT.value
        assert outcome.shipment.last_update is not None
        assert store.get_shipment("111111111111") == outcome.shipment
        assert len(upstream.calls_for("111111111111")) == 1

        [log] = store.list_sync_logs("111111111111")
        assert log.source is SyncSource.FEDEX
        assert log.success
        assert log.response_data == outcome.shipment.tracking_payload

    def test_final_shipment_is_skipped(
        self,
        store: ShipmentStore,
        tracker: ShipmentTracker,
        upstream: ScriptedUpstream,
    ) -> None:
        """Test a delivered shipment is not looked up."""
        store.upsert_shipment(_delivered("222222222222"))

        outcome = tracker.refresh("222222222222", timeout=WAIT)

        assert outcome.skipped
        assert not outcome.refreshed
        assert outcome.shipment.status == "delivered"
        assert upstream.calls == []
        assert store.list_sync_logs() == []

    def test_force_refreshes_final_shipment(
        self,
        store: ShipmentStore,
        tracker: ShipmentTracker,
        upstream: ScriptedUpstream,
    ) -> None:
        """Test force bypasses the refresh policy."""
        store.upsert_shipment(_delivered("222222222222"))

        outcome = tracker.refresh("222222222222", force=True, timeout=WAIT)

        assert outcome.refreshed
        assert len(upstream.calls) == 1

    def test_lookup_failure_is_logged(
        self, store: ShipmentStore, tracker: ShipmentTracker
    ) -> None:
        """Test a failed lookup leaves the shipment and records the error."""
        shipment = Shipment(tracking_number=UNKNOWN, status="Label created")
        store.upsert_shipment(shipment)

        outcome = tracker.refresh(UNKNOWN, timeout=WAIT)

        assert not outcome.refreshed
        assert not outcome.skipped
        assert outcome.error is not None
        assert store.get_shipment(UNKNOWN) == shipment

        [log] = store.list_sync_logs(UNKNOWN)
        assert not log.success
        assert log.error_message == outcome.error

    def test_unknown_shipment(self, tracker: ShipmentTracker) -> None:
        """Test refreshing a number that is not stored raises."""
        with pytest.raises(ShipmentNotFoundError):
            tracker.refresh("999999999999")


class TestRefreshAll:
    """Tests for refreshing every stored shipment."""

    def test_mixed_batch(
        self,
        store: ShipmentStore,
        tracker: ShipmentTracker,
        upstream: ScriptedUpstream,
    ) -> None:
        """Test due shipments are refreshed and final ones skipped, in order."""
        store.upsert_shipments(
            [
                Shipment(tracking_number="333333333333"),
                _delivered("222222222222"),
                Shipment(tracking_number=UNKNOWN),
            ]
        )

        outcomes = tracker.refresh_all(timeout=WAIT)

        assert [o.tracking_number for o in outcomes] == [
            "222222222222",
            "333333333333",
            UNKNOWN,
        ]
        assert outcomes[0].skipped
        assert outcomes[1].refreshed
        assert outcomes[2].error is not None
        assert sorted(key for key, _ in upstream.calls) == ["333333333333", UNKNOWN]

    def test_force_refreshes_everything(
        self,
        store: ShipmentStore,
        tracker: ShipmentTracker,
        upstream: ScriptedUpstream,
    ) -> None:
        """Test force looks up final shipments too."""
        store.upsert_shipments(
            [_delivered("222222222222"), _delivered("555555555555")]
        )

        outcomes = tracker.refresh_all(force=True, timeout=WAIT)

        assert all(o.refreshed for o in outcomes)
        assert len(upstream.calls) == 2

    def test_empty_store(self, tracker: ShipmentTracker) -> None:
        """Test refreshing an empty store does nothing."""
        assert tracker.refresh_all() == []


class TestRefreshTimeouts:
    """Tests for lookups that do not settle in time."""

    def test_refresh_all_records_every_timeout(self, store: ShipmentStore) -> None:
        """Test a slow lookup does not stop the rest of the batch."""
        store.upsert_shipments(
            [
                Shipment(tracking_number="111111111111"),
                Shipment(tracking_number="222222222222"),
            ]
        )
        gate = threading.Event()
        clock = FakeClock()
        upstream = ScriptedUpstream(clock, gate=gate)
        config = GatewayConfig(client_id="client-id", client_secret="client-secret")

        with TrackingGateway(
            config, upstream, clock=clock, sleep=clock.sleep
        ) as gateway:
            try:
                outcomes = ShipmentTracker(store, gateway).refresh_all(timeout=0.01)
            finally:
                gate.set()

        assert [o.tracking_number for o in outcomes] == [
            "111111111111",
            "222222222222",
        ]
        assert all(not o.refreshed for o in outcomes)
        assert all(o.error == "Lookup timed out after 0.01s" for o in outcomes)

        logs = store.list_sync_logs()
        assert len(logs) == 2
        assert all(not log.success for log in logs)
        assert all(log.source is SyncSource.FEDEX for log in logs)
