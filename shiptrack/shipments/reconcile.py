"""Compare scanned package numbers against expected shipments."""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from shiptrack.gateway.validation import ParsedTrackingNumber, parse_scanned_numbers


@dataclass
class ReconciliationReport:
    """Outcome of matching a scan session against expected numbers.

    Attributes:
        matched: Expected numbers that were scanned.
        missing: Expected numbers that were not scanned.
        unexpected: Scanned numbers nobody expected.
        duplicates: Numbers scanned more than once, with their counts.
        scans: Every parsed scan in input order.
    """

    matched: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    unexpected: list[str] = field(default_factory=list)
    duplicates: dict[str, int] = field(default_factory=dict)
    scans: list[ParsedTrackingNumber] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """Whether every expected number was scanned and nothing else."""
        return not self.missing and not self.unexpected


def reconcile(scanned_text: str, expected: Iterable[str]) -> ReconciliationReport:
    """Match scanner output against the numbers expected to arrive.

    Args:
        scanned_text: Raw scanner output.
        expected: Tracking numbers that should be present.

    Returns:
        Sorted matched, missing, and unexpected numbers plus duplicates.
    """
    scans = parse_scanned_numbers(scanned_text)
    counts = Counter(scan.extracted for scan in scans)
    expected_set = {number.strip() for number in expected if number.strip()}

    return ReconciliationReport(
        matched=sorted(expected_set & counts.keys()),
        missing=sorted(expected_set - counts.keys()),
        unexpected=sorted(counts.keys() - expected_set),
        duplicates={number: n for number, n in sorted(counts.items()) if n > 1},
        scans=scans,
    )
