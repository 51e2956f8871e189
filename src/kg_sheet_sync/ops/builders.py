"""Assemble operation batches from reconciliation results.

- ``build_upsert_batch``: properties, then types, then entities, then
  relations; only CREATE items produce ops, LINK items are counted.
- ``build_update_batch``: one UpdateEntity per UPDATED diff, then a
  CreateRelation per added target and a DeleteRelation per removed relation.
- ``build_tombstone_batch``: see ``kg_sheet_sync.reconcile.tombstone``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from kg_sheet_sync.models import DiffKind, DiffStatus, EntityDiff, EntityMap, ParsedSpreadsheet
from kg_sheet_sync.ops.operations import (
    CreateEntity,
    CreateProperty,
    CreateRelation,
    CreateType,
    DeleteRelation,
    OperationBatch,
    PropertyValueSet,
    UpdateEntity,
)
from kg_sheet_sync.reconcile.relations import RelationToCreate
from kg_sheet_sync.reconcile.resolver import multi_type_entities
from kg_sheet_sync.reconcile.tombstone import build_tombstone_batch
from kg_sheet_sync.values import convert_to_typed_value, generate_id, is_blank, normalize_name, parse_multi_value_list

__all__ = ["build_tombstone_batch", "build_update_batch", "build_upsert_batch"]

logger = logging.getLogger(__name__)

DESCRIPTION_KEY = "description"


def _property_values(properties: dict[str, str], entity_map: EntityMap) -> list[PropertyValueSet]:
    values = []
    for column, raw in properties.items():
        if is_blank(raw):
            continue
        key = normalize_name(column)
        if key == DESCRIPTION_KEY:
            continue
        prop = entity_map.properties.get(key)
        if prop is None:
            logger.warning(f"Unknown property: {column}")
            continue
        if prop.definition.is_relation:
            continue
        typed = convert_to_typed_value(raw, prop.definition.data_type)
        if typed is None:
            logger.warning(f'Value "{raw}" for {column} is not a valid {prop.definition.data_type.value}, skipping')
            continue
        values.append(PropertyValueSet(property_id=prop.id, value=typed))
    return values


def _description(properties: dict[str, str]) -> str | None:
    for column, raw in properties.items():
        if normalize_name(column) == DESCRIPTION_KEY and not is_blank(raw):
            return raw.strip()
    return None


def build_upsert_batch(
    spreadsheet: ParsedSpreadsheet,
    entity_map: EntityMap,
    relations: Sequence[RelationToCreate],
) -> OperationBatch:
    """Build the create/link batch.

    Relation targets that have no row and no match in the store cannot be
    created without a type; they are skipped with a warning, and so are the
    relations pointing at them.
    """
    batch = OperationBatch()
    summary = batch.summary

    # Properties
    for prop in spreadsheet.properties:
        resolved = entity_map.properties.get(normalize_name(prop.name))
        if resolved is None:
            logger.warning(f"Property not found in map: {prop.name}")
            continue
        if resolved.is_link:
            summary.properties_linked += 1
            continue
        batch.ops.append(
            CreateProperty(id=resolved.id, name=prop.name, data_type=prop.data_type, description=prop.description)
        )
        summary.properties_created += 1

    # Types
    for type_def in spreadsheet.types:
        resolved_type = entity_map.types.get(normalize_name(type_def.name))
        if resolved_type is None:
            logger.warning(f"Type not found in map: {type_def.name}")
            continue
        if resolved_type.is_link:
            summary.types_linked += 1
            continue
        property_ids = []
        for name in parse_multi_value_list(type_def.default_properties):
            default_prop = entity_map.properties.get(normalize_name(name))
            if default_prop is None:
                logger.debug(f'Default property "{name}" for type "{type_def.name}" not found, skipping')
                continue
            property_ids.append(default_prop.id)
        batch.ops.append(
            CreateType(
                id=resolved_type.id,
                name=type_def.name,
                description=type_def.description,
                property_ids=tuple(property_ids),
            )
        )
        summary.types_created += 1

    # Entities with rows; a name spread over several tabs is created once
    processed: set[str] = set()
    for row in spreadsheet.entities:
        key = normalize_name(row.name)
        if key in processed:
            continue
        processed.add(key)
        entry = entity_map.entities.get(key)
        if entry is None:
            logger.warning(f"Entity not found in map: {row.name}")
            continue
        if entry.is_link:
            summary.entities_linked += 1
            continue
        batch.ops.append(
            CreateEntity(
                id=entry.id,
                name=entry.name,
                description=_description(row.properties),
                type_ids=entry.type_ids,
                values=tuple(_property_values(row.properties, entity_map)),
            )
        )
        summary.entities_created += 1

    # Relation targets without rows
    for key, entry in entity_map.entities.items():
        if key in processed:
            continue
        if entry.is_link:
            summary.entities_linked += 1
            continue
        if not entry.type_ids:
            logger.warning(f'Skipping entity "{entry.name}" - no types defined and not found in the store')
            continue
        batch.ops.append(CreateEntity(id=entry.id, name=entry.name, type_ids=entry.type_ids))
        summary.entities_created += 1

    # Relations
    dangling = 0
    for relation in relations:
        target = entity_map.entities.get(normalize_name(relation.to_entity_name))
        if target is not None and not target.is_link and not target.type_ids:
            dangling += 1
            logger.warning(
                f"Skipping relation {relation.from_entity_name} -> {relation.to_entity_name}: "
                "target has no types and was not found in the store"
            )
            continue
        batch.ops.append(
            CreateRelation(
                id=generate_id(),
                from_entity=relation.from_entity_id,
                to_entity=relation.to_entity_id,
                relation_type=relation.property_id,
                position=relation.position,
            )
        )
        summary.relations_created += 1
    if dangling:
        logger.warning(f"Skipped {dangling} relations with unresolvable targets")

    summary.multi_type_entities = multi_type_entities(entity_map)
    logger.info(
        f"Built {len(batch)} ops: {summary.properties_created} properties, {summary.types_created} types, "
        f"{summary.entities_created} entities, {summary.relations_created} relations"
    )
    return batch


def build_update_batch(diffs: Sequence[EntityDiff]) -> OperationBatch:
    """Turn entity diffs into update, create-relation and delete-relation ops.

    SET changes whose value could not be converted to the property's type are
    left out of the UpdateEntity op.
    """
    batch = OperationBatch()
    summary = batch.summary

    for diff in diffs:
        if diff.status != DiffStatus.UPDATED:
            continue

        values = tuple(
            PropertyValueSet(property_id=change.property_id, value=change.typed_value)
            for change in diff.scalar_changes
            if change.kind == DiffKind.SET and change.typed_value is not None
        )
        description = diff.description_change.next if diff.description_change else None
        if values or description is not None:
            batch.ops.append(UpdateEntity(id=diff.entity_id, values=values, description=description))
            summary.entities_updated += 1

        for relation_diff in diff.relation_changes:
            for target in relation_diff.to_add:
                batch.ops.append(
                    CreateRelation(
                        id=generate_id(),
                        from_entity=diff.entity_id,
                        to_entity=target.entity_id,
                        relation_type=relation_diff.property_id,
                    )
                )
                summary.relations_created += 1
            for removal in relation_diff.to_remove:
                batch.ops.append(DeleteRelation(id=removal.relation_id))
                summary.relations_deleted += 1

    logger.info(f"Built {len(batch)} update ops")
    return batch
