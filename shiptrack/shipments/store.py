"""SQLite shipment store implementation."""

import json
import sqlite3
import time
import uuid
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import structlog

from shiptrack.gateway.models import NormalizedResult
from shiptrack.shipments.errors import ShipmentNotFoundError, StoreConnectionError
from shiptrack.shipments.migrations import CURRENT_VERSION, SchemaMigrator
from shiptrack.shipments.models import Shipment, SyncLog, SyncSource


logger = structlog.get_logger()


@dataclass
class TransactionContext:
    """Context for a single store transaction."""

    tx_id: str
    start_time_ns: int
    operation: str
    affected_rows: int = 0

    def add_affected_rows(self, rows: int) -> None:
        """Add to the affected rows count."""
        self.affected_rows += rows


class ShipmentStore:
    """SQLite store for shipments and their sync history.

    Uses WAL mode and applies schema migrations on connect. Writes use
    last-write-wins semantics keyed on tracking number.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the shipment store.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path) if isinstance(db_path, str) else db_path
        self._conn: sqlite3.Connection | None = None
        self._log = logger.bind(component="store", db_path=str(self._db_path))

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    @property
    def is_connected(self) -> bool:
        """Check if connected to database."""
        return self._conn is not None

    def connect(self) -> None:
        """Open connection to database and apply migrations.

        Creates the database file and parent directories if they don't exist.
        """
        if self._conn is not None:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._log.info("connecting_to_database")

        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        migrator = SchemaMigrator(self._conn)
        old_version = migrator.version
        applied = migrator.migrate()

        self._log.info(
            "database_connected",
            old_version=old_version,
            new_version=CURRENT_VERSION,
            migrations_applied=applied,
        )

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._log.info("database_closed")

    def __enter__(self) -> "ShipmentStore":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database is connected.

        Returns:
            The database connection.

        Raises:
            StoreConnectionError: If not connected.
        """
        if self._conn is None:
            raise StoreConnectionError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def _transaction(self, operation: str) -> Generator[TransactionContext]:
        """Context manager for transactions with timing and logging.

        Args:
            operation: Name of the operation for logging.

        Yields:
            Transaction context with timing information.
        """
        conn = self._ensure_connected()
        tx_id = str(uuid.uuid4())[:8]
        start_ns = time.perf_counter_ns()
        ctx = TransactionContext(
            tx_id=tx_id, start_time_ns=start_ns, operation=operation
        )

        try:
            yield ctx
            conn.commit()
            duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
            self._log.debug(
                "transaction_complete",
                tx_id=tx_id,
                op=operation,
                affected_rows=ctx.affected_rows,
                duration_ms=round(duration_ms, 2),
            )

        except Exception:
            conn.rollback()
            self._log.error("transaction_failed", tx_id=tx_id, op=operation)
            raise

    # ===== Shipments =====

    def upsert_shipment(self, shipment: Shipment) -> Shipment:
        """Insert a shipment or replace the stored one.

        Args:
            shipment: Shipment to write.

        Returns:
            The shipment as stored.
        """
        row = _shipment_to_row(shipment)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(
            f"{name} = excluded.{name}" for name in row if name != "tracking_number"
        )

        with self._transaction("upsert_shipment") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                f"""
                INSERT INTO shipments ({columns}) VALUES ({placeholders})
                ON CONFLICT(tracking_number) DO UPDATE SET {updates}
                """,  # noqa: S608
                tuple(row.values()),
            )
            ctx.add_affected_rows(cursor.rowcount)

        return shipment

    def upsert_shipments(self, shipments: Iterable[Shipment]) -> int:
        """Write several shipments.

        Args:
            shipments: Shipments to write.

        Returns:
            Number of shipments written.
        """
        count = 0
        for shipment in shipments:
            self.upsert_shipment(shipment)
            count += 1
        return count

    def get_shipment(self, tracking_number: str) -> Shipment | None:
        """Get a shipment by tracking number.

        Args:
            tracking_number: Master tracking number.

        Returns:
            The shipment, or None if not found.
        """
        conn = self._ensure_connected()
        cursor = conn.execute(
            "SELECT * FROM shipments WHERE tracking_number = ?",
            (tracking_number,),
        )
        row = cursor.fetchone()
        return _row_to_shipment(row) if row is not None else None

    def require_shipment(self, tracking_number: str) -> Shipment:
        """Get a shipment that must exist.

        Raises:
            ShipmentNotFoundError: If no shipment has this number.
        """
        shipment = self.get_shipment(tracking_number)
        if shipment is None:
            raise ShipmentNotFoundError(tracking_number)
        return shipment

    def list_shipments(self) -> list[Shipment]:
        """List all shipments ordered by tracking number."""
        conn = self._ensure_connected()
        cursor = conn.execute("SELECT * FROM shipments ORDER BY tracking_number")
        return [_row_to_shipment(row) for row in cursor.fetchall()]

    def apply_tracking_result(
        self,
        tracking_number: str,
        result: NormalizedResult,
        child_tracking_numbers: list[str] | None = None,
        now: datetime | None = None,
    ) -> Shipment:
        """Merge a tracking lookup into the stored shipment.

        Child tracking numbers are only replaced when the new list is
        non-empty.

        Args:
            tracking_number: Shipment to update.
            result: Normalized lookup result.
            child_tracking_numbers: Children reported by the lookup, if any.
            now: Update time (defaults to the current UTC time).

        Returns:
            The updated shipment.

        Raises:
            ShipmentNotFoundError: If no shipment has this number.
        """
        existing = self.require_shipment(tracking_number)
        updated = existing.model_copy(
            update={
                "status": result.status.value,
                "scheduled_delivery": (
                    result.estimated_completion.isoformat()
                    if result.estimated_completion
                    else existing.scheduled_delivery
                ),
                "child_tracking_numbers": (
                    list(child_tracking_numbers)
                    if child_tracking_numbers
                    else existing.child_tracking_numbers
                ),
                "last_update": now or datetime.now(UTC),
                "tracking_payload": result.model_dump_json(
                    exclude={"raw_upstream_payload"}
                ),
            }
        )
        return self.upsert_shipment(updated)

    def set_child_tracking_numbers(
        self, tracking_number: str, child_tracking_numbers: list[str]
    ) -> Shipment:
        """Replace a shipment's child tracking numbers.

        Raises:
            ShipmentNotFoundError: If no shipment has this number.
        """
        existing = self.require_shipment(tracking_number)
        updated = existing.model_copy(
            update={
                "child_tracking_numbers": list(child_tracking_numbers),
                "package_count": max(len(child_tracking_numbers), 1),
            }
        )
        return self.upsert_shipment(updated)

    def mark_manually_completed(
        self, tracking_number: str, completed: bool = True
    ) -> Shipment:
        """Flag a shipment as handled outside tracking.

        Raises:
            ShipmentNotFoundError: If no shipment has this number.
        """
        existing = self.require_shipment(tracking_number)
        return self.upsert_shipment(
            existing.model_copy(update={"manually_completed": completed})
        )

    def all_tracking_numbers(self) -> list[str]:
        """Every number expected to be scanned.

        Returns:
            Child numbers where present, else master numbers; sorted and
            de-duplicated.
        """
        numbers: set[str] = set()
        for shipment in self.list_shipments():
            numbers.update(shipment.scan_numbers)
        return sorted(numbers)

    def mark_not_scanned(self, numbers: Iterable[str]) -> int:
        """Flag shipments whose packages were missing from a scan.

        Args:
            numbers: Master or child tracking numbers.

        Returns:
            Number of shipments flagged.
        """
        return self._set_not_scanned(numbers, True, "mark_not_scanned")

    def mark_scanned(self, numbers: Iterable[str]) -> int:
        """Clear the not-scanned flag on shipments.

        Args:
            numbers: Master or child tracking numbers.

        Returns:
            Number of shipments cleared.
        """
        return self._set_not_scanned(numbers, False, "mark_scanned")

    def _set_not_scanned(
        self, numbers: Iterable[str], not_scanned: bool, operation: str
    ) -> int:
        wanted = {number.strip() for number in numbers if number.strip()}
        matching = [
            shipment.tracking_number
            for shipment in self.list_shipments()
            if wanted & {shipment.tracking_number, *shipment.scan_numbers}
        ]

        with self._transaction(operation) as ctx:
            conn = self._ensure_connected()
            for tracking_number in matching:
                cursor = conn.execute(
                    "UPDATE shipments SET not_scanned = ? WHERE tracking_number = ?",
                    (1 if not_scanned else 0, tracking_number),
                )
                ctx.add_affected_rows(cursor.rowcount)

        return len(matching)

    def reset_flags(self) -> int:
        """Clear the not-scanned and manually-completed flags everywhere.

        Returns:
            Number of shipments reset.
        """
        with self._transaction("reset_flags") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                "UPDATE shipments SET not_scanned = 0, manually_completed = 0"
            )
            ctx.add_affected_rows(cursor.rowcount)
        return ctx.affected_rows

    def delete_shipment(self, tracking_number: str) -> bool:
        """Delete one shipment. Its sync logs are kept.

        Args:
            tracking_number: Master tracking number.

        Returns:
            True if a shipment was deleted.
        """
        with self._transaction("delete_shipment") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                "DELETE FROM shipments WHERE tracking_number = ?", (tracking_number,)
            )
            ctx.add_affected_rows(cursor.rowcount)
        return ctx.affected_rows > 0

    def delete_all_shipments(self) -> int:
        """Delete every shipment. Sync logs are kept.

        Returns:
            Number of shipments deleted.
        """
        with self._transaction("delete_all_shipments") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute("DELETE FROM shipments")
            ctx.add_affected_rows(cursor.rowcount)
        return ctx.affected_rows

    # ===== Sync Logs =====

    def record_sync_log(self, entry: SyncLog) -> SyncLog:
        """Append a sync log entry.

        Args:
            entry: Entry to record.

        Returns:
            The entry with its assigned id.
        """
        with self._transaction("record_sync_log") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                """
                INSERT INTO sync_logs (
                    timestamp, source, tracking_number, success,
                    error_message, response_data
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.timestamp.isoformat(),
                    entry.source.value,
                    entry.tracking_number,
                    1 if entry.success else 0,
                    entry.error_message,
                    entry.response_data,
                ),
            )
            ctx.add_affected_rows(1)

        return entry.model_copy(update={"id": cursor.lastrowid})

    def list_sync_logs(
        self, tracking_number: str | None = None, limit: int = 100
    ) -> list[SyncLog]:
        """List sync log entries, newest first.

        Args:
            tracking_number: Only entries for this number, if given.
            limit: Maximum number of entries.

        Returns:
            Matching entries.
        """
        conn = self._ensure_connected()
        if tracking_number is None:
            cursor = conn.execute(
                "SELECT * FROM sync_logs ORDER BY id DESC LIMIT ?", (limit,)
            )
        else:
            cursor = conn.execute(
                """
                SELECT * FROM sync_logs WHERE tracking_number = ?
                ORDER BY id DESC LIMIT ?
                """,
                (tracking_number, limit),
            )

        return [
            SyncLog(
                id=row["id"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                source=SyncSource(row["source"]),
                tracking_number=row["tracking_number"],
                success=bool(row["success"]),
                error_message=row["error_message"],
                response_data=row["response_data"],
            )
            for row in cursor.fetchall()
        ]


def _shipment_to_row(shipment: Shipment) -> dict[str, object]:
    """Flatten a shipment into column values."""
    row: dict[str, object] = shipment.model_dump(
        exclude={"child_tracking_numbers", "last_update"}
    )
    row["child_tracking_numbers"] = json.dumps(shipment.child_tracking_numbers)
    row["not_scanned"] = 1 if shipment.not_scanned else 0
    row["manually_completed"] = 1 if shipment.manually_completed else 0
    row["last_update"] = (
        shipment.last_update.isoformat() if shipment.last_update else None
    )
    return row


def _row_to_shipment(row: sqlite3.Row) -> Shipment:
    """Build a shipment from a shipments row."""
    data = dict(row)
    data["child_tracking_numbers"] = json.loads(data["child_tracking_numbers"])
    data["not_scanned"] = bool(data["not_scanned"])
    data["manually_completed"] = bool(data["manually_completed"])
    data["last_update"] = (
        datetime.fromisoformat(data["last_update"]) if data["last_update"] else None
    )
    return Shipment(**data)
