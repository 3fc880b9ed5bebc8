"""Domain exceptions for the shipment store.

Infrastructure errors (database issues) are kept apart from domain
errors (missing records).
"""


class StoreError(Exception):
    """Base exception for all shipment store errors."""


class StoreConnectionError(StoreError):
    """Raised when the database connection is not established."""

    def __init__(self, message: str = "Database not connected") -> None:
        """Initialize the connection error.

        Args:
            message: Human-readable error message.
        """
        super().__init__(message)


class ShipmentNotFoundError(StoreError):
    """Raised when a tracking number has no shipment record."""

    def __init__(self, tracking_number: str) -> None:
        """Initialize the error with the missing tracking number.

        Args:
            tracking_number: The tracking number that was not found.
        """
        self.tracking_number = tracking_number
        super().__init__(f"Shipment not found: {tracking_number}")
