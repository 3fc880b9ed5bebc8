"""OAuth client-credentials token cache for the FedEx API."""

import threading
import time
from http import HTTPStatus

import httpx
import structlog

from shiptrack.gateway.config import GatewayConfig
from shiptrack.gateway.constants import (
    COMPONENT_GATEWAY,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    OAUTH_TOKEN_PATH,
)
from shiptrack.gateway.errors import AuthenticationError, GatewayNotConfiguredError
from shiptrack.gateway.metrics import GatewayMetrics
from shiptrack.gateway.models import CachedToken
from shiptrack.gateway.protocols import Clock


logger = structlog.get_logger()


class CredentialCache:
    """Holds a bearer token and refreshes it when stale or absent.

    Refresh is serialized by an internal lock so two callers never issue
    two auth calls for the same expiry. Errors are reported once; the
    cache never retries on its own.
    """

    def __init__(
        self,
        config: GatewayConfig,
        http_client: httpx.Client,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the credential cache.

        Args:
            config: Gateway configuration with client credentials.
            http_client: HTTP client used for the token endpoint.
            clock: Monotonic clock used for expiry.
        """
        self._config = config
        self._http = http_client
        self._clock = clock
        self._token: CachedToken | None = None
        self._lock = threading.Lock()
        self._log = logger.bind(
            component=COMPONENT_GATEWAY, subcomponent="credentials"
        )

    @property
    def token(self) -> CachedToken | None:
        """Currently cached token, if any."""
        return self._token

    def get_token(self) -> str:
        """Return a valid bearer token, authenticating if needed.

        Returns:
            Access token string.

        Raises:
            GatewayNotConfiguredError: If credentials are missing.
            AuthenticationError: If the token endpoint rejects the call,
                times out, or returns no token.
        """
        with self._lock:
            token = self._token
            if token is not None and token.is_valid(self._clock()):
                return token.value

            self._token = self._authenticate()
            return self._token.value

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authenticates."""
        with self._lock:
            if self._token is not None:
                self._log.info("oauth_token_invalidated")
            self._token = None

    def _authenticate(self) -> CachedToken:
        """Exchange client credentials for a new token.

        Must be called while holding the lock.

        Returns:
            Freshly issued token.
        """
        config = self._config
        if (
            not config.is_configured
            or config.client_id is None
            or config.client_secret is None
        ):
            raise GatewayNotConfiguredError

        url = f"{config.base_url}{OAUTH_TOKEN_PATH}"
        issued_at = self._clock()

        try:
            response = self._http.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": config.client_id.get_secret_value(),
                    "client_secret": config.client_secret.get_secret_value(),
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=config.auth_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            self._log.warning("oauth_token_timeout", error=str(exc))
            msg = f"Token request timed out: {exc}"
            raise AuthenticationError(msg) from exc
        except httpx.HTTPError as exc:
            self._log.warning("oauth_token_network_error", error=str(exc))
            msg = f"Network error during token request: {exc}"
            raise AuthenticationError(msg) from exc

        if response.status_code != HTTPStatus.OK:
            self._log.warning(
                "oauth_token_rejected",
                status_code=response.status_code,
            )
            msg = f"Token request failed with status {response.status_code}"
            raise AuthenticationError(msg)

        try:
            data = response.json()
        except ValueError as exc:
            msg = "Token response is not valid JSON"
            raise AuthenticationError(msg) from exc

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            msg = "No access_token in token response"
            raise AuthenticationError(msg)

        lifetime = _parse_lifetime(data.get("expires_in"))
        expires_at = issued_at + lifetime - config.token_safety_margin_seconds

        GatewayMetrics.get_instance().record_token_refresh()
        self._log.info(
            "oauth_token_refreshed",
            expires_in=lifetime,
            safety_margin=config.token_safety_margin_seconds,
        )
        return CachedToken(value=access_token, expires_at=expires_at)


def _parse_lifetime(value: object) -> float:
    """Parse ``expires_in`` from the token response.

    Args:
        value: Raw ``expires_in`` value.

    Returns:
        Token lifetime in seconds, defaulting to one hour.
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    try:
        lifetime = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    return lifetime if lifetime > 0 else DEFAULT_TOKEN_LIFETIME_SECONDS
