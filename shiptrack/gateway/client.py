"""FedEx Track API client."""

import time
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import structlog

from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.constants import (
    COMPONENT_GATEWAY,
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_FORBIDDEN,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
    HTTP_STATUS_SERVER_ERROR_MAX,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_STATUS_TOO_MANY_REQUESTS,
    HTTP_STATUS_UNAUTHORIZED,
    HTTP_STATUS_UNPROCESSABLE,
    INVALID_KEY_ERROR_CODES,
    STATUS_CODE_MAP,
    TRACK_PATH,
)
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
from shiptrack.gateway.models import NormalizedResult, TrackingEvent, TrackingStatus


logger = structlog.get_logger()


class FedExTrackingClient:
    """Client for the FedEx Track v1 API.

    Performs exactly one authenticated lookup per ``fetch`` call and maps
    every outcome to a ``NormalizedResult`` or a typed ``GatewayError``.
    The only repeat it makes on its own is a single re-authentication
    after a 401; every other retry decision belongs to the queue.
    """

    def __init__(
        self,
        config: GatewayConfig,
        credentials: CredentialCache,
        http_client: httpx.Client,
    ) -> None:
        """Initialize the client.

        Args:
            config: Gateway configuration.
            credentials: Token cache supplying bearer tokens.
            http_client: HTTP client used for tracking calls.
        """
        self._config = config
        self._credentials = credentials
        self._http = http_client
        self._metrics = GatewayMetrics.get_instance()
        self._log = logger.bind(component=COMPONENT_GATEWAY, subcomponent="client")

    def fetch(self, key: str) -> NormalizedResult:
        """Look up one tracking number.

        Args:
            key: Tracking number.

        Returns:
            Normalized tracking result.

        Raises:
            AuthenticationError: If credentials are rejected twice.
            RateLimitedError: On HTTP 429.
            UpstreamTimeoutError: If the request times out.
            NotFoundError: If upstream has no record for the key.
            MalformedKeyError: If upstream rejects the key.
            UpstreamError: On any other non-2xx response or transport error.
        """
        log = self._log.bind(key=key)
        start_ns = time.perf_counter_ns()

        response = self._post_track(key)
        if response.status_code == HTTP_STATUS_UNAUTHORIZED:
            log.info("oauth_token_rejected_retrying")
            self._credentials.invalidate()
            response = self._post_track(key)
            if response.status_code == HTTP_STATUS_UNAUTHORIZED:
                msg = "Tracking request unauthorized after token refresh"
                raise AuthenticationError(msg, key=key)

        self._raise_for_status(key, response)

        try:
            payload = response.json()
        except ValueError as exc:
            msg = "Tracking response is not valid JSON"
            raise UpstreamError(
                msg, key=key, status_code=response.status_code
            ) from exc

        result = parse_track_response(key, payload)

        log.info(
            "tracking_lookup_complete",
            status=result.status.value,
            events=len(result.events),
            duration_ms=round((time.perf_counter_ns() - start_ns) / 1_000_000, 2),
        )
        return result

    def _post_track(self, key: str) -> httpx.Response:
        """Send a single tracking request with a bearer token.

        Args:
            key: Tracking number.

        Returns:
            HTTP response from the Track API.
        """
        token = self._credentials.get_token()
        try:
            response = self._http.post(
                f"{self._config.base_url}{TRACK_PATH}",
                json={
                    "trackingInfo": [
                        {"trackingNumberInfo": {"trackingNumber": key}},
                    ],
                    "includeDetailedScans": True,
                },
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                timeout=self._config.request_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            self._metrics.record_upstream_call(0)
            msg = f"Tracking request timed out: {exc}"
            raise UpstreamTimeoutError(msg, key=key) from exc
        except httpx.HTTPError as exc:
            self._metrics.record_upstream_call(0)
            msg = f"Tracking request failed: {exc}"
            raise UpstreamError(msg, key=key, retryable_hint=True) from exc

        self._metrics.record_upstream_call(response.status_code)
        return response

    def _raise_for_status(self, key: str, response: httpx.Response) -> None:
        """Map a non-2xx response to a typed error.

        Args:
            key: Tracking number.
            response: HTTP response.
        """
        status = response.status_code
        if HTTP_STATUS_OK_MIN <= status < HTTP_STATUS_OK_MAX:
            return

        if status == HTTP_STATUS_TOO_MANY_REQUESTS:
            raise RateLimitedError(
                key=key,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )

        if status == HTTP_STATUS_FORBIDDEN:
            msg = "Tracking request forbidden (403)"
            raise AuthenticationError(msg, key=key)

        if status == HTTP_STATUS_NOT_FOUND:
            msg = f"Tracking number not found: {key}"
            raise NotFoundError(msg, key=key)

        if status in (HTTP_STATUS_BAD_REQUEST, HTTP_STATUS_UNPROCESSABLE):
            msg = f"Tracking number rejected ({status}): {key}"
            raise MalformedKeyError(msg, key=key)

        if HTTP_STATUS_SERVER_ERROR_MIN <= status < HTTP_STATUS_SERVER_ERROR_MAX:
            msg = f"Server error ({status})"
            raise UpstreamError(msg, key=key, status_code=status, retryable_hint=True)

        msg = f"Unexpected response status ({status})"
        raise UpstreamError(msg, key=key, status_code=status)


def parse_track_response(key: str, payload: Any) -> NormalizedResult:
    """Parse a Track API response into a normalized result.

    Every nested field may be missing; only a missing track result (or
    one carrying an upstream error) is treated as a failure.

    Args:
        key: Tracking number that was looked up.
        payload: Decoded JSON body.

    Returns:
        Normalized tracking result.

    Raises:
        NotFoundError: If the body has no track result for the key.
        MalformedKeyError: If upstream flagged the key as invalid.
    """
    output = _as_dict(_as_dict(payload).get("output"))
    complete = _first(output.get("completeTrackResults"))
    track_result = _first(complete.get("trackResults"))
    if not track_result:
        msg = f"No tracking results for {key}"
        raise NotFoundError(msg, key=key)

    error = _as_dict(track_result.get("error"))
    error_code = error.get("code")
    if error_code in INVALID_KEY_ERROR_CODES:
        msg = error.get("message") or f"Invalid tracking number: {key}"
        raise MalformedKeyError(msg, key=key)
    if error_code:
        msg = error.get("message") or f"Tracking number not found: {key}"
        raise NotFoundError(msg, key=key)

    latest = _as_dict(track_result.get("latestStatusDetail"))
    scan_location = _as_dict(latest.get("scanLocation"))
    dates = track_result.get("dateAndTimes")

    return NormalizedResult(
        key=key,
        status=map_status_code(latest.get("code")),
        status_description=latest.get("description") or None,
        estimated_completion=_find_date(dates, "ESTIMATED_DELIVERY"),
        actual_delivery=_find_date(dates, "ACTUAL_DELIVERY"),
        last_location=scan_location.get("city") or None,
        events=tuple(
            _parse_event(event) for event in _as_list(track_result.get("scanEvents"))
        ),
        raw_upstream_payload=_as_dict(payload),
    )


def map_status_code(code: Any) -> TrackingStatus:
    """Map an upstream status code to a normalized status.

    Args:
        code: ``latestStatusDetail.code`` value.

    Returns:
        Normalized status; PENDING for unknown or missing codes.
    """
    value = STATUS_CODE_MAP.get(code) if isinstance(code, str) else None
    return TrackingStatus(value) if value else TrackingStatus.PENDING


def _parse_event(event: Any) -> TrackingEvent:
    """Parse one scan event."""
    data = _as_dict(event)
    location = _as_dict(data.get("scanLocation"))
    parts = [location.get("city") or "", location.get("stateOrProvinceCode") or ""]
    return TrackingEvent(
        timestamp=_parse_datetime(data.get("date")),
        location=", ".join(part for part in parts if part),
        description=data.get("eventDescription") or "",
    )


def _find_date(dates: Any, date_type: str) -> datetime | None:
    """Find a typed entry in ``dateAndTimes``."""
    for entry in _as_list(dates):
        entry_dict = _as_dict(entry)
        if entry_dict.get("type") == date_type:
            return _parse_datetime(entry_dict.get("dateTime"))
    return None


def _parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None when unparseable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_retry_after(value: str | None) -> int | None:
    """Parse a Retry-After header value.

    Args:
        value: Header value (seconds or HTTP date).

    Returns:
        Seconds to wait, or None if not parseable.
    """
    if not value:
        return None

    try:
        return int(value)
    except ValueError:
        pass

    try:
        dt = parsedate_to_datetime(value)
        delta = dt - datetime.now(UTC)
        return max(0, int(delta.total_seconds()))
    except (ValueError, TypeError):
        pass

    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _first(value: Any) -> dict[str, Any]:
    items = _as_list(value)
    return _as_dict(items[0]) if items else {}
