"""Parse spreadsheet exports of expected shipments."""

import csv
from collections import OrderedDict
from dataclasses import dataclass, field

import structlog

from shiptrack.gateway.models import TrackingStatus
from shiptrack.shipments.models import Shipment


logger = structlog.get_logger()

HEADER_MARKER = "Tracking Number"
WEIGHT_SUFFIX = "LB"

# Column order of the shipment export
COLUMNS = (
    "tracking_number",
    "status",
    "scheduled_delivery",
    "shipper_name",
    "shipper_company",
    "recipient_name",
    "recipient_company",
    "master_tracking_number",
    "package_count",
    "package_type",
    "package_weight",
    "total_weight",
    "direction",
    "service_type",
)

# Label fragments of the export's status column, checked in order
STATUS_LABELS: tuple[tuple[tuple[str, ...], TrackingStatus], ...] = (
    (("delivered",), TrackingStatus.DELIVERED),
    (("out for delivery",), TrackingStatus.OUT_FOR_DELIVERY),
    (("on the way", "in transit", "picked up"), TrackingStatus.IN_TRANSIT),
    (
        ("label created", "shipment information sent", "pending"),
        TrackingStatus.PENDING,
    ),
    (("exception", "delay"), TrackingStatus.EXCEPTION),
)


@dataclass(frozen=True)
class ImportRowError:
    """A row that could not be turned into a shipment.

    Attributes:
        line_number: 1-based line in the input.
        tracking_number: Tracking number on the row, if any.
        errors: Validation messages.
    """

    line_number: int
    tracking_number: str
    errors: tuple[str, ...]


@dataclass
class BulkImportResult:
    """Shipments parsed from an export plus rejected rows."""

    shipments: list[Shipment] = field(default_factory=list)
    errors: list[ImportRowError] = field(default_factory=list)

    @property
    def box_count(self) -> int:
        """Total number of physical packages across shipments."""
        return sum(len(s.scan_numbers) for s in self.shipments)


def normalize_status(label: str) -> str:
    """Map an export status label onto a tracking status value.

    Labels that match no known fragment are kept as written; an empty
    label is pending.

    Args:
        label: Status column text, e.g. ``"On the way"``.

    Returns:
        Normalized status such as ``"in_transit"``, or the label itself.
    """
    text = label.strip().lower()
    if not text:
        return TrackingStatus.PENDING.value
    for fragments, status in STATUS_LABELS:
        if any(fragment in text for fragment in fragments):
            return status.value
    return label.strip()


def split_line(line: str) -> list[str]:
    """Split one export line into trimmed cells.

    Tab-separated when the line contains a tab, else comma-separated with
    double-quoted cells.
    """
    if "\t" in line:
        return [part.strip() for part in line.split("\t")]
    return [part.strip() for part in next(csv.reader([line]), [])]


def _row_values(cells: list[str]) -> dict[str, str]:
    """Map cells onto column names, padding short rows."""
    padded = cells + [""] * (len(COLUMNS) - len(cells))
    return dict(zip(COLUMNS, padded, strict=False))


def _weight(value: str) -> str | None:
    return f"{value}{WEIGHT_SUFFIX}" if value else None


def _parse_row(line_number: int, cells: list[str]) -> Shipment | ImportRowError:
    """Validate one row and build a standalone shipment from it."""
    values = _row_values(cells)
    tracking_number = values["tracking_number"]
    errors: list[str] = []

    if not tracking_number:
        errors.append("Missing tracking number")

    raw_count = values["package_count"] or "1"
    try:
        package_count = int(raw_count)
    except ValueError:
        package_count = 0
    if package_count <= 0:
        errors.append("Invalid package count")

    if errors:
        return ImportRowError(
            line_number=line_number,
            tracking_number=tracking_number,
            errors=tuple(errors),
        )

    return Shipment(
        tracking_number=tracking_number,
        status=normalize_status(values["status"]),
        scheduled_delivery=values["scheduled_delivery"] or None,
        shipper_name=values["shipper_name"] or None,
        shipper_company=values["shipper_company"] or None,
        recipient_name=values["recipient_name"] or None,
        recipient_company=values["recipient_company"] or None,
        master_tracking_number=values["master_tracking_number"] or None,
        package_count=package_count,
        package_type=values["package_type"] or None,
        package_weight=_weight(values["package_weight"]),
        total_weight=_weight(values["total_weight"]),
        direction=values["direction"] or None,
        service_type=values["service_type"] or None,
    )


def _merge_group(master: str, rows: list[Shipment]) -> Shipment:
    """Collapse rows sharing a master tracking number into one shipment.

    Details come from the master's own row when present, else the first
    row; every row's tracking number becomes a child.
    """
    master_row = next((r for r in rows if r.tracking_number == master), rows[0])
    children = list(dict.fromkeys(r.tracking_number for r in rows))
    return master_row.model_copy(
        update={
            "tracking_number": master,
            "master_tracking_number": master,
            "child_tracking_numbers": children,
        }
    )


def parse_bulk_import(text: str) -> BulkImportResult:
    """Parse a pasted or exported shipment list.

    Rows sharing a master tracking number are grouped into one shipment
    whose children are the rows' tracking numbers. Rows without a master
    are kept as standalone shipments.

    Args:
        text: Export contents, one shipment row per line.

    Returns:
        Parsed shipments and per-row errors.
    """
    result = BulkImportResult()
    groups: OrderedDict[str, list[Shipment]] = OrderedDict()
    standalone: list[Shipment] = []

    for index, line in enumerate(text.strip().splitlines()):
        if not line.strip():
            continue
        if index == 0 and HEADER_MARKER in line:
            continue

        parsed = _parse_row(index + 1, split_line(line))
        if isinstance(parsed, ImportRowError):
            result.errors.append(parsed)
        elif parsed.master_tracking_number:
            groups.setdefault(parsed.master_tracking_number, []).append(parsed)
        else:
            standalone.append(parsed)

    result.shipments.extend(
        _merge_group(master, rows) for master, rows in groups.items()
    )
    result.shipments.extend(standalone)

    logger.info(
        "bulk_import_parsed",
        component="shipments",
        shipments=len(result.shipments),
        grouped=len(groups),
        standalone=len(standalone),
        rejected=len(result.errors),
    )
    return result
