"""Local tracking-number checks and batch validation helpers."""

import re
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from shiptrack.gateway.constants import (
    COMPONENT_GATEWAY,
    SCANNED_BARCODE_TRACKING_DIGITS,
    TRACKING_NUMBER_PATTERN,
)
from shiptrack.gateway.errors import GatewayError, MalformedKeyError, NotFoundError
from shiptrack.gateway.models import NormalizedResult


if TYPE_CHECKING:
    from shiptrack.gateway.queue import TrackingGateway


logger = structlog.get_logger()

_TRACKING_NUMBER_RE = re.compile(TRACKING_NUMBER_PATTERN)
_LIST_NUMBERING_RE = re.compile(r"^\d+\.\s*")
_SCAN_SPLIT_RE = re.compile(r"[\n,\s]+")


def validate_format(key: str) -> bool:
    """Cheap offline check that a key looks like a FedEx tracking number.

    Args:
        key: Candidate tracking number.

    Returns:
        True if the key is 12 to 15 digits.
    """
    return bool(_TRACKING_NUMBER_RE.match(key.strip()))


@dataclass(frozen=True)
class ParsedTrackingNumber:
    """A scanned code and the tracking number extracted from it.

    Attributes:
        original: Code as scanned.
        extracted: Tracking number to match against shipments.
        was_extracted: Whether ``extracted`` differs from ``original``.
    """

    original: str
    extracted: str
    was_extracted: bool


def extract_tracking_number(scanned: str) -> ParsedTrackingNumber:
    """Extract the tracking number from a scanned barcode.

    Package barcodes carry routing digits ahead of the 12-digit tracking
    number, so all-digit codes longer than 12 keep only their last 12.

    Args:
        scanned: Raw scanned code.

    Returns:
        Parsed tracking number.
    """
    trimmed = scanned.strip()
    if len(trimmed) > SCANNED_BARCODE_TRACKING_DIGITS and trimmed.isdigit():
        return ParsedTrackingNumber(
            original=trimmed,
            extracted=trimmed[-SCANNED_BARCODE_TRACKING_DIGITS:],
            was_extracted=True,
        )
    return ParsedTrackingNumber(
        original=trimmed, extracted=trimmed, was_extracted=False
    )


def parse_scanned_numbers(text: str) -> list[ParsedTrackingNumber]:
    """Parse free-form scanner output into tracking numbers.

    Codes may be separated by newlines, commas, or spaces, and may carry
    list numbering such as ``"3. "``.

    Args:
        text: Pasted scanner output.

    Returns:
        Parsed numbers in input order.
    """
    parsed: list[ParsedTrackingNumber] = []
    for line in text.splitlines():
        line = _LIST_NUMBERING_RE.sub("", line.strip())
        for token in _SCAN_SPLIT_RE.split(line):
            if token:
                parsed.append(extract_tracking_number(token))
    return parsed


@dataclass
class NeighborProbeResult:
    """Outcome of probing numbers adjacent to a known tracking number.

    Attributes:
        found: Results for neighbours upstream recognized.
        missing: Neighbours upstream does not know.
        errors: Neighbours whose lookup failed for another reason.
    """

    found: list[NormalizedResult] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


def neighbor_keys(key: str, radius: int) -> list[str]:
    """List sequential numeric neighbours of a tracking number.

    Args:
        key: Known all-digit tracking number.
        radius: How many numbers to try on each side.

    Returns:
        Neighbours of the same width, nearest first, excluding ``key``.

    Raises:
        ValueError: If the key is not all digits or radius is negative.
    """
    key = key.strip()
    if not key.isdigit():
        msg = f"Tracking number must be numeric to probe neighbours: {key!r}"
        raise ValueError(msg)
    if radius < 0:
        msg = f"Radius must be non-negative: {radius}"
        raise ValueError(msg)

    width = len(key)
    base = int(key)
    upper = 10**width
    keys: list[str] = []
    for offset in range(1, radius + 1):
        for candidate in (base + offset, base - offset):
            if 0 <= candidate < upper:
                keys.append(str(candidate).zfill(width))
    return keys


def probe_neighbors(
    gateway: "TrackingGateway",
    key: str,
    radius: int = 5,
    timeout: float | None = None,
) -> NeighborProbeResult:
    """Look for unlisted packages numbered next to a known one.

    Multi-package shipments are often labelled with consecutive numbers.
    All neighbours are submitted at once and the gateway serializes them,
    so this is an ordinary batch of ``submit`` calls.

    Args:
        gateway: Gateway used for the lookups.
        key: Known tracking number.
        radius: How many numbers to try on each side.
        timeout: Seconds to wait for each lookup. Neighbours that time out
            are reported under ``errors``.

    Returns:
        Neighbours split into found, missing, and errored.
    """
    futures: list[tuple[str, Future[NormalizedResult]]] = [
        (candidate, gateway.submit(candidate))
        for candidate in neighbor_keys(key, radius)
    ]

    outcome = NeighborProbeResult()
    for candidate, future in futures:
        try:
            outcome.found.append(future.result(timeout=timeout))
        except (NotFoundError, MalformedKeyError):
            outcome.missing.append(candidate)
        except GatewayError as exc:
            outcome.errors[candidate] = str(exc)
        except TimeoutError:
            future.cancel()
            outcome.errors[candidate] = f"Lookup timed out after {timeout}s"

    logger.info(
        "neighbor_probe_complete",
        component=COMPONENT_GATEWAY,
        key=key,
        radius=radius,
        found=len(outcome.found),
        missing=len(outcome.missing),
        errors=len(outcome.errors),
    )
    return outcome
