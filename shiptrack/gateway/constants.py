"""Constants for the FedEx tracking gateway.

Centralizes endpoints, defaults, and HTTP status boundaries so the
client, policy, and configuration layers agree on them.
"""

# Upstream endpoints
DEFAULT_BASE_URL = "https://apis.fedex.com"
OAUTH_TOKEN_PATH = "/oauth/token"  # noqa: S105
TRACK_PATH = "/track/v1/trackingnumbers"

# Pacing and retry defaults
DEFAULT_MIN_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAYS_SECONDS = (30.0, 60.0, 120.0)

# Timeouts
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_AUTH_TIMEOUT_SECONDS = 10.0

# Tokens
DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS = 60.0
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600.0

# HTTP status boundaries
HTTP_STATUS_OK_MIN = 200
HTTP_STATUS_OK_MAX = 300
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_UNAUTHORIZED = 401
HTTP_STATUS_FORBIDDEN = 403
HTTP_STATUS_NOT_FOUND = 404
HTTP_STATUS_UNPROCESSABLE = 422
HTTP_STATUS_TOO_MANY_REQUESTS = 429
HTTP_STATUS_SERVER_ERROR_MIN = 500
HTTP_STATUS_SERVER_ERROR_MAX = 600

# Upstream error codes carried inside a 2xx track result
INVALID_KEY_ERROR_CODES = frozenset({"TRACKING.TRACKINGNUMBER.INVALID"})

# FedEx latestStatusDetail.code -> normalized status value
STATUS_CODE_MAP = {
    "IT": "in_transit",
    "OD": "out_for_delivery",
    "DL": "delivered",
    "DE": "exception",
    "PU": "picked_up",
}

# FedEx tracking numbers are 12 to 15 digits
TRACKING_NUMBER_PATTERN = r"^\d{12,15}$"
SCANNED_BARCODE_TRACKING_DIGITS = 12

COMPONENT_GATEWAY = "gateway"
