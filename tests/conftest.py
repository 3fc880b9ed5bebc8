"""Shared pytest fixtures."""

from collections.abc import Generator

import pytest

from shiptrack.gateway.metrics import GatewayMetrics


@pytest.fixture(autouse=True)
def reset_gateway_metrics() -> Generator[None]:
    """Give every test a fresh metrics singleton."""
    GatewayMetrics.reset()
    yield
    GatewayMetrics.reset()
