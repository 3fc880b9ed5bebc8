"""Unit tests for the FedEx tracking client."""

import json
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from shiptrack.gateway.client import (
    FedExTrackingClient,
    map_status_code,
    parse_track_response,
)
from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.credentials import CredentialCache
from shiptrack.gateway.errors import (
    AuthenticationError,
    MalformedKeyError,
    NotFoundError,
    RateLimitedError,
    UpstreamError,
    UpstreamTimeoutError,
)
from shiptrack.gateway.metrics import GatewayMetrics
from shiptrack.gateway.models import TrackingStatus
from tests.helpers.clock import FakeClock
from tests.helpers.upstream import KNOWN_KEY, track_payload


BASE_URL = "https://fedex.test"

TrackHandler = Callable[[httpx.Request], httpx.Response]


class FakeFedEx:
    """MockTransport handler serving the token and track endpoints."""

    def __init__(self, track: TrackHandler) -> None:
        self._track = track
        self.token_requests = 0
        self.track_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            self.token_requests += 1
            return httpx.Response(
                200,
                json={
                    "access_token": f"token-{self.token_requests}",
                    "expires_in": 3600,
                },
            )
        self.track_requests.append(request)
        return self._track(request)


def _client(fake: FakeFedEx) -> FedExTrackingClient:
    config = GatewayConfig(
        base_url=BASE_URL, client_id="client-id", client_secret="client-secret"
    )
    http = httpx.Client(transport=httpx.MockTransport(fake))
    credentials = CredentialCache(config, http, clock=FakeClock())
    return FedExTrackingClient(config, credentials, http)


def _respond(status: int, **kwargs: object) -> TrackHandler:
    return lambda _: httpx.Response(status, **kwargs)  # type: ignore[arg-type]


class TestFetch:
    """Tests for successful lookups."""

    def test_success_returns_normalized_result(self) -> None:
        """Test a 200 body is parsed into a NormalizedResult."""
        fake = FakeFedEx(_respond(200, json=track_payload(code="OD")))

        result = _client(fake).fetch(KNOWN_KEY)

        assert result.key == KNOWN_KEY
        assert result.status is TrackingStatus.OUT_FOR_DELIVERY
        assert result.last_location == "MEMPHIS"

    def test_request_shape(self) -> None:
        """Test the track call posts the key with a bearer token."""
        fake = FakeFedEx(_respond(200, json=track_payload()))

        _client(fake).fetch(KNOWN_KEY)

        request = fake.track_requests[0]
        assert str(request.url) == f"{BASE_URL}/track/v1/trackingnumbers"
        assert request.headers["Authorization"] == "Bearer token-1"
        body = json.loads(request.content)
        assert body == {
            "trackingInfo": [{"trackingNumberInfo": {"trackingNumber": KNOWN_KEY}}],
            "includeDetailedScans": True,
        }

    def test_records_upstream_call(self) -> None:
        """Test each track response is counted by status."""
        fake = FakeFedEx(_respond(200, json=track_payload()))

        _client(fake).fetch(KNOWN_KEY)

        metrics = GatewayMetrics.get_instance()
        assert metrics.upstream_calls_by_status[200] == 1
        assert metrics.total_upstream_calls == 1


class TestUnauthorizedRefresh:
    """Tests for the single re-authentication after a 401."""

    def test_401_refreshes_token_once(self) -> None:
        """Test a 401 invalidates the token and retries with a new one."""
        responses = iter(
            [httpx.Response(401), httpx.Response(200, json=track_payload())]
        )
        fake = FakeFedEx(lambda _: next(responses))

        result = _client(fake).fetch(KNOWN_KEY)

        assert result.status is TrackingStatus.IN_TRANSIT
        assert fake.token_requests == 2
        assert [r.headers["Authorization"] for r in fake.track_requests] == [
            "Bearer token-1",
            "Bearer token-2",
        ]

    def test_second_401_is_authentication_error(self) -> None:
        """Test two 401s in a row surface as AuthenticationError."""
        fake = FakeFedEx(_respond(401))

        with pytest.raises(AuthenticationError) as exc_info:
            _client(fake).fetch(KNOWN_KEY)

        assert exc_info.value.key == KNOWN_KEY
        assert len(fake.track_requests) == 2


class TestStatusMapping:
    """Tests for mapping HTTP failures to typed errors."""

    def test_429_is_rate_limited(self) -> None:
        """Test 429 maps to RateLimitedError with Retry-After."""
        fake = FakeFedEx(_respond(429, headers={"Retry-After": "45"}))

        with pytest.raises(RateLimitedError) as exc_info:
            _client(fake).fetch(KNOWN_KEY)

        assert exc_info.value.retry_after == 45
        assert exc_info.value.status_code == 429

    def test_403_is_authentication_error(self) -> None:
        """Test 403 maps to AuthenticationError."""
        with pytest.raises(AuthenticationError):
            _client(FakeFedEx(_respond(403))).fetch(KNOWN_KEY)

    def test_404_is_not_found(self) -> None:
        """Test 404 maps to NotFoundError."""
        with pytest.raises(NotFoundError):
            _client(FakeFedEx(_respond(404))).fetch(KNOWN_KEY)

    @pytest.mark.parametrize("status", [400, 422])
    def test_client_errors_are_malformed_key(self, status: int) -> None:
        """Test 400 and 422 map to MalformedKeyError."""
        with pytest.raises(MalformedKeyError):
            _client(FakeFedEx(_respond(status))).fetch(KNOWN_KEY)

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_server_errors_are_retryable_upstream_errors(self, status: int) -> None:
        """Test 5xx maps to UpstreamError with a retryable hint."""
        with pytest.raises(UpstreamError) as exc_info:
            _client(FakeFedEx(_respond(status))).fetch(KNOWN_KEY)

        assert exc_info.value.status_code == status
        assert exc_info.value.retryable_hint is True

    def test_unexpected_status_is_not_retryable(self) -> None:
        """Test other statuses map to a non-retryable UpstreamError."""
        with pytest.raises(UpstreamError) as exc_info:
            _client(FakeFedEx(_respond(302))).fetch(KNOWN_KEY)

        assert exc_info.value.retryable_hint is False

    def test_timeout(self) -> None:
        """Test a request timeout maps to UpstreamTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamTimeoutError):
            _client(FakeFedEx(handler)).fetch(KNOWN_KEY)

        assert GatewayMetrics.get_instance().upstream_calls_by_status[0] == 1

    def test_transport_error(self) -> None:
        """Test a connection failure is a retryable UpstreamError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            _client(FakeFedEx(handler)).fetch(KNOWN_KEY)

        assert exc_info.value.retryable_hint is True

    def test_invalid_json_body(self) -> None:
        """Test a non-JSON 200 body is an UpstreamError."""
        with pytest.raises(UpstreamError, match="not valid JSON"):
            _client(FakeFedEx(_respond(200, text="oops"))).fetch(KNOWN_KEY)


class TestParseTrackResponse:
    """Tests for parse_track_response."""

    def test_full_payload(self) -> None:
        """Test every normalized field is extracted."""
        payload = track_payload(
            code="DL",
            dateAndTimes=[
                {"type": "ESTIMATED_DELIVERY", "dateTime": "2024-03-01T17:00:00Z"},
                {"type": "ACTUAL_DELIVERY", "dateTime": "2024-03-01T14:32:00-05:00"},
            ],
            scanEvents=[
                {
                    "date": "2024-03-01T14:32:00-05:00",
                    "eventDescription": "Delivered",
                    "scanLocation": {"city": "AUSTIN", "stateOrProvinceCode": "TX"},
                },
                {"eventDescription": "Picked up", "scanLocation": {"city": "DALLAS"}},
            ],
        )

        result = parse_track_response(KNOWN_KEY, payload)

        assert result.status is TrackingStatus.DELIVERED
        assert result.status_description == "In transit"
        assert result.estimated_completion == datetime(2024, 3, 1, 17, tzinfo=UTC)
        assert result.actual_delivery is not None
        assert result.actual_delivery.utcoffset() is not None
        assert [e.location for e in result.events] == ["AUSTIN, TX", "DALLAS"]
        assert result.events[1].timestamp is None
        assert result.raw_upstream_payload == payload

    def test_missing_nested_fields(self) -> None:
        """Test a bare track result parses to a pending result."""
        result = parse_track_response(KNOWN_KEY, track_payload(code=None))

        assert result.status is TrackingStatus.PENDING
        assert result.status_description is None
        assert result.estimated_completion is None
        assert result.last_location is None
        assert result.events == ()

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"output": {}},
            {"output": {"completeTrackResults": []}},
            {"output": {"completeTrackResults": [{"trackResults": []}]}},
            ["not", "an", "object"],
        ],
    )
    def test_no_track_result_is_not_found(self, payload: object) -> None:
        """Test bodies without a track result raise NotFoundError."""
        with pytest.raises(NotFoundError):
            parse_track_response(KNOWN_KEY, payload)

    def test_invalid_key_error_code(self) -> None:
        """Test an invalid-number error code raises MalformedKeyError."""
        payload = track_payload(
            code=None,
            error={
                "code": "TRACKING.TRACKINGNUMBER.INVALID",
                "message": "Invalid tracking number.",
            },
        )

        with pytest.raises(MalformedKeyError, match="Invalid tracking number"):
            parse_track_response(KNOWN_KEY, payload)

    def test_other_error_code_is_not_found(self) -> None:
        """Test any other error code raises NotFoundError."""
        payload = track_payload(
            code=None, error={"code": "TRACKING.TRACKINGNUMBER.NOTFOUND"}
        )

        with pytest.raises(NotFoundError):
            parse_track_response(KNOWN_KEY, payload)

    def test_unparseable_dates_are_dropped(self) -> None:
        """Test malformed timestamps become None instead of failing."""
        payload = track_payload(
            dateAndTimes=[{"type": "ESTIMATED_DELIVERY", "dateTime": "next week"}]
        )

        assert parse_track_response(KNOWN_KEY, payload).estimated_completion is None


class TestMapStatusCode:
    """Tests for map_status_code."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("IT", TrackingStatus.IN_TRANSIT),
            ("OD", TrackingStatus.OUT_FOR_DELIVERY),
            ("DL", TrackingStatus.DELIVERED),
            ("DE", TrackingStatus.EXCEPTION),
            ("PU", TrackingStatus.PICKED_UP),
            ("XX", TrackingStatus.PENDING),
            (None, TrackingStatus.PENDING),
            (42, TrackingStatus.PENDING),
        ],
    )
    def test_mapping(self, code: object, expected: TrackingStatus) -> None:
        """Test known codes map and everything else is pending."""
        assert map_status_code(code) is expected
