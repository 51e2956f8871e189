#!/usr/bin/env python3
"""Command-line interface for kg-sheet-sync.

Commands:
    upsert  Create types, properties, entities and relations; link what already exists
    update  Diff rows against live entities and set what changed
    delete  Blank the entities listed in the "Entities to delete" tab

Every command reads a workbook from Google Sheets (--sheet) or from a
directory of TSV/CSV exports (--tabs-dir), plans a batch against the live
store, and hands the batch to the JSON file publisher unless --dry-run is set.

Example:
    kg-sheet-sync update --tabs-dir data/companies --dry-run
"""

from __future__ import annotations

import functools
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn

import click
import google.auth.exceptions
import gspread
import requests

from kg_sheet_sync.clients.geo import GeoClient
from kg_sheet_sync.config import NETWORKS, Settings
from kg_sheet_sync.errors import InvalidInputError, ReconcileError
from kg_sheet_sync.models import Metadata
from kg_sheet_sync.pipelines import plan_tombstone, plan_update, plan_upsert
from kg_sheet_sync.publish import JsonFilePublisher
from kg_sheet_sync.report import (
    build_delete_report,
    build_update_report,
    build_upsert_report,
    format_diff,
    save_operation_report,
    save_snapshot,
    write_remaining_csv,
)
from kg_sheet_sync.sheets import DELETE_TAB, Workbook, format_validation_report, load_tabs_dir, parse_entity_ids
from kg_sheet_sync.sheets.gsheets import load_workbook

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = Path("reports")
PREVIEW_COUNT = 5


def common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command."""

    @click.option("--sheet", "-s", help="Google Sheet name or ID")
    @click.option(
        "--tabs-dir",
        "-d",
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        help="Directory of TSV/CSV exports, one file per tab",
    )
    @click.option(
        "--network",
        "-n",
        type=click.Choice(NETWORKS, case_sensitive=False),
        help="Target network (default: GEO_NETWORK or TESTNET)",
    )
    @click.option("--dry-run", is_flag=True, help="Plan and report, but do not publish")
    @click.option(
        "--output",
        "-o",
        type=click.Path(file_okay=False, path_type=Path),
        default=DEFAULT_OUTPUT_DIR,
        show_default=True,
        help="Directory for reports and batch files",
    )
    @click.option("--yes", "-y", "--force", "yes", is_flag=True, help="Skip the confirmation prompt")
    @click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        level = logging.DEBUG if kwargs["verbose"] else logging.INFO
        logging.basicConfig(level=level, format="%(levelname)s: %(message)s", force=True)
        return func(*args, **kwargs)

    return wrapper


def read_workbook(sheet: str | None, tabs_dir: Path | None) -> Workbook:
    if tabs_dir is not None and not sheet:
        return load_tabs_dir(tabs_dir)
    if sheet and tabs_dir is None:
        try:
            return load_workbook(sheet)
        except (gspread.exceptions.GSpreadException, google.auth.exceptions.GoogleAuthError) as e:
            raise InvalidInputError(f"Could not read Google Sheet '{sheet}': {type(e).__name__}: {e}") from e
        except requests.RequestException as e:
            raise InvalidInputError(f"Could not reach Google Sheets for '{sheet}': {e}") from e
    raise click.UsageError("Provide exactly one of --sheet or --tabs-dir.")


def fail(message: str) -> NoReturn:
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(package_name="kg-sheet-sync")
def main() -> None:
    """Reconcile curator spreadsheets with a knowledge graph."""


@main.command()
@common_options
def upsert(
    sheet: str | None,
    tabs_dir: Path | None,
    network: str | None,
    dry_run: bool,
    output: Path,
    yes: bool,
    verbose: bool,
) -> None:
    """Create what is new and link what already exists."""
    try:
        settings = Settings.from_env(network)
        workbook = read_workbook(sheet, tabs_dir)
        with GeoClient.from_settings(settings) as client:
            plan = plan_upsert(client, workbook)
    except (ReconcileError, FileNotFoundError) as e:
        fail(str(e))

    if plan.validation.issues:
        click.echo(format_validation_report(plan.validation))

    summary = plan.batch.summary
    metadata = plan.spreadsheet.metadata
    click.echo(f"Network:    {settings.network}")
    click.echo(f"Space:      {metadata.space_id} ({metadata.space_type})")
    click.echo(f"Types:      {summary.types_created} new, {summary.types_linked} linked")
    click.echo(f"Properties: {summary.properties_created} new, {summary.properties_linked} linked")
    click.echo(f"Entities:   {summary.entities_created} new, {summary.entities_linked} linked")
    click.echo(f"Relations:  {summary.relations_created} new")
    for name, types in summary.multi_type_entities:
        click.echo(f"  multi-type: {name} [{', '.join(types)}]")
    click.echo(f"Operations: {len(plan.batch)}")

    report = build_upsert_report(plan.batch, plan.entity_map, plan.relations, metadata, settings.network, dry_run)
    if dry_run:
        save_operation_report(report, output)
        click.echo("Dry run complete -- no changes were made.")
        return

    if not plan.batch.ops:
        click.echo("Nothing to publish: everything already exists.")
        return

    if not yes and not click.confirm(f"Publish {len(plan.batch)} operations to {settings.network}?", default=False):
        click.echo("Upsert cancelled.")
        return

    result = JsonFilePublisher(output, settings.network).publish(plan.batch, metadata, "upsert")
    report.success = result.success
    report.batch_file = result.location
    report.error = result.error
    save_operation_report(report, output)
    if not result.success:
        fail(f"Publish failed: {result.error}")
    click.echo(f"Batch written to {result.location}")


@main.command()
@common_options
@click.option("--additive", is_flag=True, help="Only add relations; never remove live ones")
def update(
    sheet: str | None,
    tabs_dir: Path | None,
    network: str | None,
    dry_run: bool,
    output: Path,
    yes: bool,
    verbose: bool,
    additive: bool,
) -> None:
    """Set changed values and relations on existing entities."""
    try:
        settings = Settings.from_env(network)
        workbook = read_workbook(sheet, tabs_dir)
        with GeoClient.from_settings(settings) as client:
            plan = plan_update(client, workbook, additive=additive)
    except (ReconcileError, FileNotFoundError) as e:
        fail(str(e))

    if plan.validation.issues:
        click.echo(format_validation_report(plan.validation))
    for line in format_diff(plan.diffs, plan.summary, verbose=verbose):
        click.echo(line)

    metadata = plan.spreadsheet.metadata
    report = build_update_report(plan.diffs, plan.summary, metadata, settings.network, dry_run, additive)
    if dry_run:
        save_operation_report(report, output)
        click.echo("Dry run complete -- no changes were made.")
        return

    if not plan.batch.ops:
        if plan.has_changes:
            logger.warning("The diff listed changes but none produced an operation")
        click.echo("No changes detected -- nothing to publish.")
        return

    if not yes and not click.confirm("Apply these changes? This action cannot be undone.", default=False):
        click.echo("Update cancelled.")
        return

    result = JsonFilePublisher(output, settings.network).publish(plan.batch, metadata, "update")
    report.success = result.success
    report.batch_file = result.location
    report.error = result.error
    save_operation_report(report, output)
    if not result.success:
        fail(f"Publish failed: {result.error}")
    click.echo(f"Batch written to {result.location}")


def abort_delete(message: str, workbook: Workbook, output: Path, snapshot_path: Path | None) -> NoReturn:
    """Report a failed delete and list the IDs to retry."""
    click.echo(f"ERROR: Delete failed: {message}", err=True)
    if snapshot_path:
        click.echo(f"Pre-deletion snapshot available at: {snapshot_path}", err=True)
    remaining = parse_entity_ids(workbook, DELETE_TAB).ids
    if remaining:
        write_remaining_csv(remaining, output)
    sys.exit(1)


@main.command()
@common_options
@click.option("--space", help="Space to blank entities in (must match the sheet's Space ID column if both are set)")
@click.option("--author", help="Author recorded with the batch")
def delete(
    sheet: str | None,
    tabs_dir: Path | None,
    network: str | None,
    dry_run: bool,
    output: Path,
    yes: bool,
    verbose: bool,
    space: str | None,
    author: str | None,
) -> None:
    """Blank entities: remove every relation and unset every property.

    The entity IDs stay resolvable but hold no data afterwards.
    """
    try:
        settings = Settings.from_env(network)
        workbook = read_workbook(sheet, tabs_dir)
    except (ReconcileError, FileNotFoundError) as e:
        fail(str(e))

    try:
        with GeoClient.from_settings(settings) as client:
            plan = plan_tombstone(client, workbook, space)
    except ReconcileError as e:
        abort_delete(str(e), workbook, output, None)

    click.echo(f"{'Entity':<40} {'Properties':>10} {'Relations':>10} {'Backlinks':>10}")
    for snapshot in plan.snapshots:
        name = (snapshot.name or "(unnamed)")[:40]
        counts = (len(snapshot.property_ids), len(snapshot.relations), len(snapshot.backlinks))
        click.echo(f"{name:<40} {counts[0]:>10} {counts[1]:>10} {counts[2]:>10}")

    report = build_delete_report(plan.snapshots, plan.summary, plan.batch, plan.space_id, settings.network, dry_run)
    if dry_run:
        save_operation_report(report, output)
        click.echo("Dry run complete -- no changes were made.")
        return

    snapshot_path = save_snapshot(plan.snapshots)
    if not plan.batch.ops:
        click.echo("No operations to publish: the entities hold no properties, relations or backlinks.")
        return

    if not yes:
        preview = ", ".join(s.display_name for s in plan.snapshots[:PREVIEW_COUNT])
        more = "..." if len(plan.snapshots) > PREVIEW_COUNT else ""
        click.echo(
            f"About to delete {len(plan.snapshots)} entities. "
            "This will remove all properties, relations, and type assignments."
        )
        click.echo(f"Entities: {preview}{more}")
        if not click.confirm("Proceed?", default=False):
            click.echo("Delete cancelled.")
            return

    metadata = Metadata(space_id=plan.space_id, author=author)
    result = JsonFilePublisher(output, settings.network).publish(plan.batch, metadata, "delete")
    report.success = result.success
    report.batch_file = result.location
    report.error = result.error
    save_operation_report(report, output)
    if not result.success:
        abort_delete(f"Publish failed: {result.error}", workbook, output, snapshot_path)
    click.echo(f"Batch written to {result.location}")


if __name__ == "__main__":
    main()
