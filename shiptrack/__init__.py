"""Shipment tracking back end with a rate-limited FedEx gateway."""

__version__ = "0.1.0"
