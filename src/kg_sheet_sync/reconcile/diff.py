"""Diff engine for the update pipeline.

Compares spreadsheet rows against live entity snapshots and produces typed
per-entity diffs that the op builders turn into updates.

- A blank cell means "no opinion", never "unset": it produces no diff entry.
- Both sides are canonicalized by declared data type before comparing.
- A relation's ``type_id`` is the ID of the property that defines it; live
  relations are filtered on exactly that.
- In additive mode relations are only ever added.
- A snapshot fetch failure stops the run; a partial view of live state would
  under-diff.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from kg_sheet_sync.clients.base import QueryClient
from kg_sheet_sync.config import DESCRIPTION_PROPERTY_ID
from kg_sheet_sync.errors import ReferenceRole, UnresolvedReference, UnresolvedReferenceError
from kg_sheet_sync.models import (
    DataType,
    DiffKind,
    DiffStatus,
    DiffSummary,
    EntityDiff,
    EntitySnapshot,
    OutgoingRelation,
    PropertyDiff,
    PropertyValue,
    RelationDiff,
    RelationRemoval,
    RelationTarget,
    ResolutionMap,
    ResolvedProperty,
    SpreadsheetEntity,
)
from kg_sheet_sync.reconcile.snapshots import fetch_snapshots
from kg_sheet_sync.values import (
    canonical_value,
    convert_to_typed_value,
    current_value_as_string,
    is_blank,
    normalize_name,
    values_equal,
)

logger = logging.getLogger(__name__)

DESCRIPTION_KEY = "description"
NOT_SET = "(not set)"


# =============================================================================
# Scalars
# =============================================================================


def diff_scalar_property(
    property_name: str,
    property_id: str,
    value: str,
    current_values: Sequence[PropertyValue],
    data_type: DataType,
) -> PropertyDiff:
    """Compare one non-blank cell with the live value of the same property.

    Args:
        property_name: Column name, for display
        property_id: Resolved property ID
        value: Spreadsheet cell text (non-blank)
        current_values: Live values from the entity snapshot
        data_type: Declared data type of the property

    Returns:
        PropertyDiff of kind UNCHANGED when the canonical forms are equal,
        otherwise SET with the typed value to write
    """
    current_raw = current_value_as_string(tuple(current_values), property_id, data_type)

    if current_raw is not None:
        wanted = canonical_value(value, data_type)
        live = canonical_value(current_raw, data_type)
        if values_equal(wanted, live, data_type):
            return PropertyDiff(
                property_id=property_id,
                property_name=property_name,
                kind=DiffKind.UNCHANGED,
                previous=current_raw,
                next=value,
            )

    typed_value = convert_to_typed_value(value, data_type)
    if typed_value is None:
        logger.warning(f'Value "{value}" for {property_name} is not a valid {data_type.value}; it will not be written')
    return PropertyDiff(
        property_id=property_id,
        property_name=property_name,
        kind=DiffKind.SET,
        previous=current_raw if current_raw is not None else NOT_SET,
        next=value,
        typed_value=typed_value,
    )


# =============================================================================
# Relations
# =============================================================================


def diff_relation_property(
    property_id: str,
    property_name: str,
    desired: Sequence[RelationTarget],
    current_relations: Sequence[OutgoingRelation],
    additive: bool = False,
) -> RelationDiff:
    """Set-compare desired relation targets with live relations of one type.

    Only live relations whose ``type_id`` equals ``property_id`` take part.
    Order and multiplicity are ignored; each removal carries the live
    relation's own ID.
    """
    live = [r for r in current_relations if r.type_id == property_id]
    live_targets = {r.target_id for r in live}

    diff = RelationDiff(property_id=property_id, property_name=property_name)
    seen: set[str] = set()
    for target in desired:
        if target.entity_id in seen:
            continue
        seen.add(target.entity_id)
        if target.entity_id in live_targets:
            diff.unchanged.append(target)
        else:
            diff.to_add.append(target)

    if not additive:
        for relation in live:
            if relation.target_id not in seen:
                diff.to_remove.append(
                    RelationRemoval(
                        relation_id=relation.relation_id,
                        entity_id=relation.target_id,
                        entity_name=relation.target_name or relation.target_id,
                    )
                )
    return diff


# =============================================================================
# Entities
# =============================================================================


def diff_entity(
    row: SpreadsheetEntity,
    snapshot: EntitySnapshot,
    properties: Mapping[str, ResolvedProperty],
    entities: ResolutionMap,
    additive: bool = False,
) -> EntityDiff:
    """Diff one spreadsheet row against its entity's live snapshot.

    Args:
        row: Parsed spreadsheet row
        snapshot: Live state of the entity in the target space
        properties: Normalized property name -> resolved property
        entities: Normalized name -> resolution entry, covering every relation target
        additive: Never remove relations when True

    Returns:
        EntityDiff with status SKIPPED when nothing changes
    """
    scalar_changes: list[PropertyDiff] = []
    relation_changes: list[RelationDiff] = []
    description_change: PropertyDiff | None = None
    unchanged_scalars = 0
    unchanged_relations = 0

    for column, value in row.properties.items():
        if is_blank(value):
            continue
        key = normalize_name(column)

        if key == DESCRIPTION_KEY:
            result = diff_scalar_property("Description", DESCRIPTION_PROPERTY_ID, value, snapshot.values, DataType.TEXT)
            if result.kind == DiffKind.SET:
                description_change = result
            else:
                unchanged_scalars += 1
            continue

        prop = properties.get(key)
        if prop is None:
            logger.debug(f'Property "{column}" is not a known property, skipping')
            continue
        if prop.definition.is_relation:
            continue

        result = diff_scalar_property(column, prop.id, value, snapshot.values, prop.definition.data_type)
        if result.kind == DiffKind.SET:
            scalar_changes.append(result)
        else:
            unchanged_scalars += 1

    for column, target_names in row.relations.items():
        if not target_names:
            continue
        prop = properties.get(normalize_name(column))
        if prop is None:
            logger.debug(f'Relation property "{column}" is not a known property, skipping')
            continue

        desired = []
        for name in target_names:
            entry = entities[normalize_name(name)]
            desired.append(RelationTarget(entity_id=entry.id, entity_name=entry.name))

        result = diff_relation_property(prop.id, column, desired, snapshot.relations, additive)
        if result.has_changes:
            relation_changes.append(result)
        else:
            unchanged_relations += 1

    changed = bool(scalar_changes or relation_changes or description_change)
    return EntityDiff(
        entity_id=snapshot.id,
        entity_name=row.name,
        status=DiffStatus.UPDATED if changed else DiffStatus.SKIPPED,
        scalar_changes=scalar_changes,
        relation_changes=relation_changes,
        description_change=description_change,
        unchanged_scalar_count=unchanged_scalars,
        unchanged_relation_count=unchanged_relations,
    )


def unresolved_relation_targets(
    rows: Sequence[SpreadsheetEntity],
    entities: ResolutionMap,
) -> list[UnresolvedReference]:
    """Every relation target name with no resolution entry, first occurrence only."""
    missing: dict[str, UnresolvedReference] = {}
    for row in rows:
        for column, targets in row.relations.items():
            for target in targets:
                key = normalize_name(target)
                if key and key not in entities and key not in missing:
                    missing[key] = UnresolvedReference(
                        target.strip(), ReferenceRole.RELATION_TARGET, f'Entity "{row.name}" via {column}'
                    )
    return list(missing.values())


def compute_entity_diffs(
    client: QueryClient,
    rows: Sequence[SpreadsheetEntity],
    entities: ResolutionMap,
    properties: Mapping[str, ResolvedProperty],
    space_id: str,
    additive: bool = False,
) -> tuple[list[EntityDiff], DiffSummary]:
    """Diff every row against live state.

    Relation targets are checked before any snapshot is fetched; all
    unresolved targets are reported together.

    Returns:
        (diffs in row order, summary)

    Raises:
        UnresolvedReferenceError: If any relation target has no resolution
        RemoteFetchError: If any snapshot fetch fails
        EntityNotFoundError: If a resolved entity no longer exists
    """
    missing = unresolved_relation_targets(rows, entities)
    if missing:
        raise UnresolvedReferenceError(missing, hint="All relation targets must exist before updating.")

    targets: list[tuple[str, str | None]] = []
    for row in rows:
        entry = entities.get(normalize_name(row.name))
        if entry is None:
            logger.warning(f'Entity "{row.name}" is not resolved, skipping diff')
            continue
        targets.append((entry.id, row.name))

    snapshots = fetch_snapshots(client, targets, space_id)

    diffs = []
    for row in rows:
        entry = entities.get(normalize_name(row.name))
        if entry is None:
            continue
        diffs.append(diff_entity(row, snapshots[entry.id], properties, entities, additive))

    return diffs, compute_diff_summary(diffs)


def compute_diff_summary(diffs: Sequence[EntityDiff]) -> DiffSummary:
    """Aggregate counts across entity diffs."""
    summary = DiffSummary(total_entities=len(diffs))
    for diff in diffs:
        if diff.status == DiffStatus.UPDATED:
            summary.entities_with_changes += 1
        else:
            summary.entities_skipped += 1
        summary.total_scalar_changes += len(diff.scalar_changes) + (1 if diff.description_change else 0)
        for relation in diff.relation_changes:
            summary.total_relations_added += len(relation.to_add)
            summary.total_relations_removed += len(relation.to_remove)
    return summary
