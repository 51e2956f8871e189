"""Run reports and pre-deletion snapshots.

Every run writes ``{operation}-{timestamp}.json`` (``{operation}-dryrun-...``
for dry runs) to the output directory. Tombstone runs also save the live
state of every target to ``.snapshots/`` before anything is published, and
write ``remaining-entities-{timestamp}.csv`` when they fail.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd

from kg_sheet_sync.models import DiffStatus, DiffSummary, EntityDiff, EntityMap, EntitySnapshot, Metadata
from kg_sheet_sync.ops import OperationBatch
from kg_sheet_sync.reconcile.diff import NOT_SET
from kg_sheet_sync.reconcile.relations import RelationToCreate
from kg_sheet_sync.reconcile.tombstone import TombstoneSummary

logger = logging.getLogger(__name__)

SNAPSHOTS_DIR = Path(".snapshots")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def file_stamp(timestamp: str) -> str:
    return timestamp.replace(":", "-").replace(".", "-")


@dataclass
class OperationReport:
    """Outcome of one upsert, update or delete run.

    Attributes:
        operation_type: "upsert", "update" or "delete"
        network: TESTNET or MAINNET
        space_id: Target space
        dry_run: True if nothing was handed to the publisher
        summary: Operation-specific counts
        details: Operation-specific listings
        success: False if the run failed after planning
        batch_file: Where the publisher wrote the batch, if it ran
        error: Failure message, if any
        timestamp: ISO-8601 UTC creation time
    """

    operation_type: str
    network: str
    space_id: str
    dry_run: bool
    summary: dict[str, Any] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    batch_file: str | None = None
    error: str | None = None
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "operation_type": self.operation_type,
            "timestamp": self.timestamp,
            "success": self.success,
            "network": self.network,
            "space_id": self.space_id,
            "dry_run": self.dry_run,
            "summary": self.summary,
            "details": self.details,
        }
        if self.batch_file:
            data["batch_file"] = self.batch_file
        if self.error:
            data["error"] = self.error
        return data


def build_upsert_report(
    batch: OperationBatch,
    entity_map: EntityMap,
    relations: Sequence[RelationToCreate],
    metadata: Metadata,
    network: str,
    dry_run: bool,
) -> OperationReport:
    types = list(entity_map.types.values())
    properties = list(entity_map.properties.values())
    entities = list(entity_map.entities.values())
    summary = batch.summary.to_dict()
    summary.pop("entities_updated")
    summary.pop("relations_deleted")
    summary.pop("properties_unset")
    return OperationReport(
        operation_type="upsert",
        network=network,
        space_id=metadata.space_id,
        dry_run=dry_run,
        summary={"space_type": metadata.space_type, **summary},
        details={
            "types_created": [{"name": t.name, "id": t.id} for t in types if not t.is_link],
            "types_linked": [{"name": t.name, "id": t.id} for t in types if t.is_link],
            "properties_created": [
                {"name": p.name, "id": p.id, "data_type": p.definition.data_type.value}
                for p in properties
                if not p.is_link
            ],
            "properties_linked": [{"name": p.name, "id": p.id} for p in properties if p.is_link],
            "entities_created": [
                {"name": e.name, "id": e.id, "types": list(e.types)} for e in entities if not e.is_link
            ],
            "entities_linked": [{"name": e.name, "id": e.id} for e in entities if e.is_link],
            "relations_created": [
                {"from": r.from_entity_name, "to": r.to_entity_name, "property": r.property_name} for r in relations
            ],
        },
    )


def describe_changes(diff: EntityDiff) -> list[str]:
    """One human-readable line per change of an entity diff."""
    if diff.status == DiffStatus.SKIPPED:
        return ["(no changes)"]
    changes = []
    scalars = [*diff.scalar_changes, *([diff.description_change] if diff.description_change else [])]
    for change in scalars:
        changes.append(f"Set '{change.property_name}' = '{change.next}' (was '{change.previous or NOT_SET}')")
    for relation in diff.relation_changes:
        changes.extend(f"Add relation '{relation.property_name}' -> '{t.entity_name}'" for t in relation.to_add)
        changes.extend(f"Remove relation '{relation.property_name}' -> '{t.entity_name}'" for t in relation.to_remove)
    return changes


def build_update_report(
    diffs: Sequence[EntityDiff],
    summary: DiffSummary,
    metadata: Metadata,
    network: str,
    dry_run: bool,
    additive: bool = False,
) -> OperationReport:
    """Skipped entities are listed with "(no changes)" rather than omitted."""
    return OperationReport(
        operation_type="update",
        network=network,
        space_id=metadata.space_id,
        dry_run=dry_run,
        summary={
            "additive": additive,
            "entities_updated": summary.entities_with_changes,
            "entities_skipped": summary.entities_skipped,
            "properties_updated": summary.total_scalar_changes,
            "relations_added": summary.total_relations_added,
            "relations_removed": summary.total_relations_removed,
        },
        details={
            "entities": [
                {"name": diff.entity_name, "id": diff.entity_id, "changes": describe_changes(diff)} for diff in diffs
            ],
            "diffs": [diff.to_dict() for diff in diffs if diff.status == DiffStatus.UPDATED],
        },
    )


def build_delete_report(
    snapshots: Sequence[EntitySnapshot],
    summary: TombstoneSummary,
    batch: OperationBatch,
    space_id: str,
    network: str,
    dry_run: bool,
) -> OperationReport:
    return OperationReport(
        operation_type="delete",
        network=network,
        space_id=space_id,
        dry_run=dry_run,
        summary={
            "entities_deleted": summary.entities_processed,
            "relations_deleted": summary.total_relations,
            "properties_unset": summary.properties_to_unset,
            "operations": len(batch),
        },
        details={"entities": [{"name": s.name or "(unnamed)", "id": s.id} for s in snapshots]},
    )


def save_operation_report(report: OperationReport, output_dir: Path) -> Path:
    """Write a report as ``{operation}[-dryrun]-{timestamp}.json``.

    Returns:
        Path of the written file
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    suffix = "-dryrun" if report.dry_run else ""
    path = output_dir / f"{report.operation_type}{suffix}-{file_stamp(report.timestamp)}.json"
    with path.open("w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
    logger.info(f"Report saved: {path}")
    return path


def save_snapshot(snapshots: Sequence[EntitySnapshot], directory: Path = SNAPSHOTS_DIR) -> Path:
    """Save the live state of entities about to be blanked."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"delete-snapshot-{file_stamp(utc_timestamp())}.json"
    with path.open("w", encoding="utf-8") as f:
        json.dump([s.to_dict() for s in snapshots], f, indent=2)
    logger.info(f"Pre-deletion snapshot saved: {path}")
    return path


def write_remaining_csv(entity_ids: Sequence[str], output_dir: Path) -> Path:
    """Write IDs that may not have been processed, for a re-run."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"remaining-entities-{file_stamp(utc_timestamp())}.csv"
    pd.DataFrame({"entity_id": list(entity_ids)}).to_csv(path, index=False)
    logger.info(f"Remaining entities written to: {path}")
    return path


def format_diff(diffs: Sequence[EntityDiff], summary: DiffSummary, verbose: bool = False) -> list[str]:
    """Per-entity diff lines followed by summary counts.

    With ``verbose`` unchanged relation targets are listed too.
    """
    lines = []
    for diff in diffs:
        lines.append(f"  [{diff.status.value.upper()}] {diff.entity_name}")
        if diff.status == DiffStatus.SKIPPED:
            lines.append("    (no changes)")
            continue
        scalars = [*diff.scalar_changes, *([diff.description_change] if diff.description_change else [])]
        for change in scalars:
            lines.append(f'    SET {change.property_name}: "{change.previous or NOT_SET}" -> "{change.next}"')
        for relation in diff.relation_changes:
            lines.extend(f"    ADD {relation.property_name} -> {t.entity_name}" for t in relation.to_add)
            lines.extend(f"    DEL {relation.property_name} -> {t.entity_name}" for t in relation.to_remove)
            if verbose:
                lines.extend(f"    ~   {relation.property_name} -> {t.entity_name}" for t in relation.unchanged)

    lines.append("")
    lines.append(f"Entities with changes: {summary.entities_with_changes}")
    lines.append(f"Entities skipped:      {summary.entities_skipped}")
    lines.append(f"Properties to set:     {summary.total_scalar_changes}")
    lines.append(f"Relations to add:      {summary.total_relations_added}")
    lines.append(f"Relations to remove:   {summary.total_relations_removed}")
    return lines
