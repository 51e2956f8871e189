"""Reconciliation core: identity resolution, diffing and tombstoning."""

from kg_sheet_sync.reconcile.diff import compute_diff_summary, compute_entity_diffs, diff_entity
from kg_sheet_sync.reconcile.relations import RelationToCreate, build_relations
from kg_sheet_sync.reconcile.resolver import (
    ExistingResolution,
    build_entity_map,
    resolve_existing,
    search_entities_by_names,
)
from kg_sheet_sync.reconcile.snapshots import fetch_snapshots
from kg_sheet_sync.reconcile.tombstone import TombstoneSummary, build_tombstone_batch, fetch_existing_snapshots

__all__ = [
    "ExistingResolution",
    "RelationToCreate",
    "TombstoneSummary",
    "build_entity_map",
    "build_relations",
    "build_tombstone_batch",
    "compute_diff_summary",
    "compute_entity_diffs",
    "diff_entity",
    "fetch_existing_snapshots",
    "fetch_snapshots",
    "resolve_existing",
    "search_entities_by_names",
]
