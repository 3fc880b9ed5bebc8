"""Versioned SQLite schema for the shipment store."""

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog


logger = structlog.get_logger()

CURRENT_VERSION = 1

_VERSION_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL,
    description TEXT
)
"""


@dataclass(frozen=True)
class Migration:
    """One schema step.

    Attributes:
        version: Schema version after the step.
        description: Short summary recorded in ``schema_version``.
        statements: DDL statements run in order.
    """

    version: int
    description: str
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="Create shipments and sync_logs",
        statements=(
            """
            CREATE TABLE shipments (
                tracking_number TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                scheduled_delivery TEXT,
                shipper_name TEXT,
                shipper_company TEXT,
                recipient_name TEXT,
                recipient_company TEXT,
                master_tracking_number TEXT,
                package_count INTEGER NOT NULL,
                package_type TEXT,
                package_weight TEXT,
                total_weight TEXT,
                direction TEXT,
                service_type TEXT,
                child_tracking_numbers TEXT NOT NULL DEFAULT '[]',
                not_scanned INTEGER NOT NULL DEFAULT 0,
                manually_completed INTEGER NOT NULL DEFAULT 0,
                last_update TEXT,
                tracking_payload TEXT
            )
            """,
            "CREATE INDEX idx_shipments_status ON shipments(status)",
            """
            CREATE TABLE sync_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                source TEXT NOT NULL,
                tracking_number TEXT,
                success INTEGER NOT NULL,
                error_message TEXT,
                response_data TEXT
            )
            """,
            "CREATE INDEX idx_sync_logs_tracking_number ON sync_logs(tracking_number)",
        ),
    ),
)


def pending_migrations(version: int) -> list[Migration]:
    """Migrations newer than ``version``, oldest first."""
    return sorted(
        (m for m in MIGRATIONS if m.version > version), key=lambda m: m.version
    )


class SchemaMigrator:
    """Brings a connection's schema up to ``CURRENT_VERSION``.

    Each migration runs in its own transaction together with its
    ``schema_version`` row, so a failed step leaves the previous version
    intact.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._log = logger.bind(component="shipments", subcomponent="migrations")

    @property
    def version(self) -> int:
        """Schema version recorded in the database, 0 when fresh."""
        self._conn.execute(_VERSION_TABLE_SQL)
        row = self._conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def migrate(self) -> list[int]:
        """Apply every pending migration.

        Returns:
            Versions applied, oldest first.

        Raises:
            sqlite3.Error: If a migration fails; it is rolled back.
        """
        applied: list[int] = []
        for migration in pending_migrations(self.version):
            self._log.info(
                "applying_migration",
                version=migration.version,
                description=migration.description,
            )
            try:
                self._apply(migration)
            except sqlite3.Error as exc:
                self._log.error(
                    "migration_failed", version=migration.version, error=str(exc)
                )
                raise
            applied.append(migration.version)
        return applied

    def _apply(self, migration: Migration) -> None:
        self._conn.execute("BEGIN")
        try:
            for statement in migration.statements:
                self._conn.execute(statement)
            self._conn.execute(
                "INSERT INTO schema_version (version, applied_at, description) "
                "VALUES (?, ?, ?)",
                (
                    migration.version,
                    datetime.now(UTC).isoformat(),
                    migration.description,
                ),
            )
        except sqlite3.Error:
            self._conn.rollback()
            raise
        self._conn.commit()
