"""CLI commands for shipment tracking."""

import json
import logging
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import click
import structlog

from shiptrack import __version__
from shiptrack.gateway import (
    GatewayError,
    GatewayNotConfiguredError,
    TrackingGateway,
)
from shiptrack.observability import bind_session_context, configure_logging
from shiptrack.settings import AppSettings, get_settings
from shiptrack.shipments import (
    ShipmentNotFoundError,
    ShipmentStore,
    ShipmentTracker,
    SyncLog,
    SyncSource,
    parse_bulk_import,
    reconcile,
)


logger = structlog.get_logger()

COMPONENT_CLI = "cli"


@dataclass
class CliState:
    """Shared state passed from the command group to subcommands."""

    settings: AppSettings
    state_path: Path


def build_gateway(settings: AppSettings) -> TrackingGateway:
    """Create the process-wide tracking gateway.

    Args:
        settings: Application settings.

    Returns:
        Gateway wired to the FedEx API.
    """
    return TrackingGateway.from_config(settings.gateway_config())


def _state(ctx: click.Context) -> CliState:
    state: CliState = ctx.obj
    return state


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--json-logs/--console-logs",
    default=True,
    help="Use JSON format for logs (default: JSON).",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging.",
)
@click.option(
    "--state",
    "state_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to SQLite shipment database (default: SHIPTRACK_DB_PATH).",
)
@click.pass_context
def cli(
    ctx: click.Context, json_logs: bool, verbose: bool, state_path: Path | None
) -> None:
    """Track FedEx shipments through a rate-limited gateway."""
    configure_logging(
        level=logging.DEBUG if verbose else logging.INFO,
        json_format=json_logs,
    )
    bind_session_context(str(uuid.uuid4()))

    settings = get_settings()
    ctx.obj = CliState(settings=settings, state_path=state_path or settings.db_path)


@cli.command()
@click.argument("keys", nargs=-1, required=True)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Seconds to wait for each lookup (default: no limit).",
)
@click.pass_context
def track(ctx: click.Context, keys: tuple[str, ...], timeout: float | None) -> None:
    """Look up tracking numbers and print the results as JSON."""
    state = _state(ctx)
    log = logger.bind(component=COMPONENT_CLI, command="track")

    failed = 0
    timed_out = 0
    gateway = build_gateway(state.settings)
    try:
        try:
            futures = [(key, gateway.submit(key)) for key in keys]
        except GatewayNotConfiguredError as exc:
            _fail(str(exc))

        for key, future in futures:
            try:
                result = future.result(timeout=timeout)
            except TimeoutError:
                future.cancel()
                failed += 1
                timed_out += 1
                click.echo(f"{key}: TimeoutError: timed out after {timeout}s", err=True)
                continue
            except GatewayError as exc:
                failed += 1
                click.echo(f"{key}: {type(exc).__name__}: {exc}", err=True)
                continue
            click.echo(
                json.dumps(
                    result.model_dump(mode="json", exclude={"raw_upstream_payload"}),
                    indent=2,
                )
            )
    finally:
        # Lookups still in flight after a timeout are abandoned
        gateway.close(wait=not timed_out)

    log.info("track_complete", requested=len(keys), failed=failed, timed_out=timed_out)
    if failed:
        sys.exit(1)


@cli.command()
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def validate(ctx: click.Context, keys: tuple[str, ...]) -> None:
    """Check whether tracking numbers are valid.

    Uses the upstream API when credentials are configured, else a format
    check.
    """
    state = _state(ctx)

    failed = 0
    with build_gateway(state.settings) as gateway:
        for key in keys:
            try:
                valid = gateway.validate_tracking_number(key)
            except GatewayError as exc:
                failed += 1
                click.echo(f"{key}\terror\t{exc}", err=True)
                continue
            click.echo(f"{key}\t{'valid' if valid else 'invalid'}")

    if failed:
        sys.exit(1)


@cli.command("queue-status")
@click.pass_context
def queue_status(ctx: click.Context) -> None:
    """Show the gateway's pending work and worker state."""
    state = _state(ctx)

    with build_gateway(state.settings) as gateway:
        status = gateway.queue_status()
        click.echo(
            json.dumps(
                {
                    "configured": gateway.is_configured,
                    "pending_count": status.pending_count,
                    "is_processing": status.is_processing,
                    "message": status.message,
                },
                indent=2,
            )
        )


@cli.command("import")
@click.argument(
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.pass_context
def import_shipments(ctx: click.Context, file_path: Path) -> None:
    """Import expected shipments from a TSV or CSV export."""
    state = _state(ctx)
    log = logger.bind(component=COMPONENT_CLI, command="import")

    result = parse_bulk_import(file_path.read_text(encoding="utf-8"))

    with ShipmentStore(state.state_path) as store:
        written = store.upsert_shipments(result.shipments)
        for row_error in result.errors:
            store.record_sync_log(
                SyncLog(
                    source=SyncSource.IMPORT,
                    tracking_number=row_error.tracking_number or None,
                    success=False,
                    error_message="; ".join(row_error.errors),
                )
            )

    click.echo(f"Imported {written} shipments ({result.box_count} boxes).")
    for row_error in result.errors:
        click.echo(
            f"  line {row_error.line_number}: {', '.join(row_error.errors)}",
            err=True,
        )
    log.info("import_complete", imported=written, rejected=len(result.errors))


@cli.command()
@click.argument("tracking_number", required=False)
@click.option(
    "--force",
    is_flag=True,
    help="Refresh even if the shipment is not due.",
)
@click.pass_context
def refresh(ctx: click.Context, tracking_number: str | None, force: bool) -> None:
    """Refresh one stored shipment, or every due shipment."""
    state = _state(ctx)

    with (
        ShipmentStore(state.state_path) as store,
        build_gateway(state.settings) as gateway,
    ):
        tracker = ShipmentTracker(store, gateway)
        try:
            if tracking_number is None:
                outcomes = tracker.refresh_all(force=force)
            else:
                outcomes = [tracker.refresh(tracking_number, force=force)]
        except (ShipmentNotFoundError, GatewayNotConfiguredError) as exc:
            _fail(str(exc))

    for outcome in outcomes:
        if outcome.error is not None:
            click.echo(f"{outcome.tracking_number}\tfailed\t{outcome.error}")
        elif outcome.skipped:
            click.echo(f"{outcome.tracking_number}\tskipped\t{outcome.shipment.status}")
        else:
            click.echo(
                f"{outcome.tracking_number}\trefreshed\t{outcome.shipment.status}"
            )

    if any(outcome.error is not None for outcome in outcomes):
        sys.exit(1)


@cli.command()
@click.argument("tracking_number")
@click.option(
    "--undo",
    is_flag=True,
    help="Clear the manual completion flag.",
)
@click.pass_context
def complete(ctx: click.Context, tracking_number: str, undo: bool) -> None:
    """Mark a shipment as received so it is no longer refreshed."""
    state = _state(ctx)

    with ShipmentStore(state.state_path) as store:
        try:
            shipment = store.mark_manually_completed(tracking_number, not undo)
        except ShipmentNotFoundError as exc:
            _fail(str(exc))

    label = "completed" if shipment.manually_completed else "reopened"
    click.echo(f"{shipment.tracking_number}\t{label}")


@cli.command()
@click.option(
    "--tracking-number",
    default=None,
    help="Only show entries for this tracking number.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="Maximum number of entries.",
)
@click.pass_context
def logs(ctx: click.Context, tracking_number: str | None, limit: int) -> None:
    """Show recent sync attempts, newest first."""
    state = _state(ctx)

    with ShipmentStore(state.state_path) as store:
        entries = store.list_sync_logs(tracking_number, limit=limit)

    for entry in entries:
        outcome = "ok" if entry.success else f"failed\t{entry.error_message or ''}"
        click.echo(
            f"{entry.timestamp.isoformat()}\t{entry.source.value}\t"
            f"{entry.tracking_number or '-'}\t{outcome}"
        )


@cli.command("list")
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def list_shipments(ctx: click.Context, json_output: bool) -> None:
    """List stored shipments."""
    state = _state(ctx)

    with ShipmentStore(state.state_path) as store:
        shipments = store.list_shipments()

    if json_output:
        click.echo(
            json.dumps([s.model_dump(mode="json") for s in shipments], indent=2)
        )
        return

    for shipment in shipments:
        last_update = (
            shipment.last_update.isoformat() if shipment.last_update else "never"
        )
        flags = [
            flag
            for flag, is_set in (
                ("not-scanned", shipment.not_scanned),
                ("completed", shipment.manually_completed),
            )
            if is_set
        ]
        click.echo(
            "\t".join(
                [
                    shipment.tracking_number,
                    shipment.status,
                    f"{len(shipment.scan_numbers)} boxes",
                    last_update,
                    *flags,
                ]
            )
        )


@cli.command("reconcile")
@click.argument(
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--mark",
    is_flag=True,
    help="Flag shipments with missing packages as not scanned.",
)
@click.pass_context
def reconcile_scans(ctx: click.Context, file_path: Path, mark: bool) -> None:
    """Compare scanned package numbers against stored shipments."""
    state = _state(ctx)
    log = logger.bind(component=COMPONENT_CLI, command="reconcile")

    with ShipmentStore(state.state_path) as store:
        expected = store.all_tracking_numbers()
        report = reconcile(file_path.read_text(encoding="utf-8"), expected)
        if mark:
            cleared = store.mark_scanned(report.matched)
            flagged = store.mark_not_scanned(report.missing)
            log.info("scan_flags_updated", cleared=cleared, flagged=flagged)

    click.echo(f"Matched: {len(report.matched)} of {len(expected)}")
    for label, numbers in (
        ("Missing", report.missing),
        ("Unexpected", report.unexpected),
    ):
        if numbers:
            click.echo(f"{label}:")
            for number in numbers:
                click.echo(f"  {number}")
    if report.duplicates:
        click.echo("Duplicates:")
        for number, count in report.duplicates.items():
            click.echo(f"  {number} x{count}")
    if mark and report.missing:
        click.echo("Shipments with missing packages flagged as not scanned.")


@cli.command()
@click.argument("tracking_numbers", nargs=-1)
@click.option(
    "--all",
    "delete_all",
    is_flag=True,
    help="Delete every stored shipment.",
)
@click.pass_context
def delete(
    ctx: click.Context, tracking_numbers: tuple[str, ...], delete_all: bool
) -> None:
    """Delete stored shipments. Sync logs are kept."""
    state = _state(ctx)
    if delete_all == bool(tracking_numbers):
        _fail("Give tracking numbers or --all, not both")

    missing: list[str] = []
    with ShipmentStore(state.state_path) as store:
        if delete_all:
            click.echo(f"Deleted {store.delete_all_shipments()} shipments.")
            return
        for tracking_number in tracking_numbers:
            if store.delete_shipment(tracking_number):
                click.echo(f"{tracking_number}\tdeleted")
            else:
                missing.append(tracking_number)

    if missing:
        _fail(f"Shipment not found: {', '.join(missing)}")


@cli.command("reset-flags")
@click.pass_context
def reset_flags(ctx: click.Context) -> None:
    """Clear not-scanned and manual completion flags on every shipment."""
    state = _state(ctx)

    with ShipmentStore(state.state_path) as store:
        count = store.reset_flags()

    click.echo(f"Reset flags on {count} shipments.")
