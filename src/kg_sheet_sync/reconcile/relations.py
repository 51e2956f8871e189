"""Relation building for the upsert pipeline.

Relations are only built for entities being created. A LINK entity already
lives in the store (possibly in another space) and is never modified here.
"""

from __future__ import annotations

import logging
import string
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from kg_sheet_sync.errors import ReferenceRole, UnresolvedReference, UnresolvedReferenceError
from kg_sheet_sync.models import EntityMap, ParsedSpreadsheet
from kg_sheet_sync.values import normalize_name

logger = logging.getLogger(__name__)

# Fractional-index alphabet used for relation positions
POSITION_DIGITS = string.digits + string.ascii_uppercase + string.ascii_lowercase


@dataclass(frozen=True)
class RelationToCreate:
    """A relation resolved to IDs, in spreadsheet order."""

    from_entity_id: str
    from_entity_name: str
    to_entity_id: str
    to_entity_name: str
    property_id: str
    property_name: str
    position: str | None = None


def position_key(index: int) -> str:
    """Order key for the ``index``-th target in a cell.

    Keys sort lexicographically in index order: "a0".."az" cover the first 62
    targets, "b00".."bzz" the next 3844.
    """
    base = len(POSITION_DIGITS)
    if index < base:
        return "a" + POSITION_DIGITS[index]
    index -= base
    if index < base * base:
        return "b" + POSITION_DIGITS[index // base] + POSITION_DIGITS[index % base]
    raise ValueError(f"Too many targets in one cell: {index + base}")


def build_relations(spreadsheet: ParsedSpreadsheet, entity_map: EntityMap) -> list[RelationToCreate]:
    """Resolve every relation cell of every CREATE row to IDs.

    Args:
        spreadsheet: Parsed workbook
        entity_map: Resolution results from ``build_entity_map``

    Returns:
        Relations in row / column / cell order

    Raises:
        UnresolvedReferenceError: Listing every unknown relation property and
            every unresolved target, if there are any
    """
    relations: list[RelationToCreate] = []
    missing: list[UnresolvedReference] = []
    skipped_linked = 0

    for row in spreadsheet.entities:
        source = entity_map.entities.get(normalize_name(row.name))
        if source is None:
            missing.append(UnresolvedReference(row.name, ReferenceRole.ENTITY, row.source_tab or None))
            continue
        if source.is_link:
            if row.relations:
                skipped_linked += 1
                logger.debug(f"Skipping relations for linked entity: {row.name}")
            continue

        for column, targets in row.relations.items():
            prop = entity_map.properties.get(normalize_name(column))
            if prop is None:
                missing.append(UnresolvedReference(column, ReferenceRole.PROPERTY, f'Entity "{row.name}"'))
                continue
            if not prop.definition.is_relation:
                logger.warning(f'Property "{column}" is not a RELATION type, skipping')
                continue

            for index, target_name in enumerate(targets):
                target = entity_map.entities.get(normalize_name(target_name))
                if target is None:
                    context = f'Entity "{row.name}" via {column}'
                    missing.append(UnresolvedReference(target_name, ReferenceRole.RELATION_TARGET, context))
                    continue
                relations.append(
                    RelationToCreate(
                        from_entity_id=source.id,
                        from_entity_name=row.name,
                        to_entity_id=target.id,
                        to_entity_name=target_name,
                        property_id=prop.id,
                        property_name=column,
                        position=position_key(index),
                    )
                )
                logger.debug(f"Relation: {row.name} -[{column}]-> {target_name}")

    if missing:
        raise UnresolvedReferenceError(missing, hint="Failed to build relations.")

    logger.info(f"Built {len(relations)} relations ({skipped_linked} linked entities skipped)")
    return relations


def relations_by_property(relations: Sequence[RelationToCreate]) -> dict[str, int]:
    """Relation counts keyed by property name."""
    return dict(Counter(r.property_name for r in relations))
