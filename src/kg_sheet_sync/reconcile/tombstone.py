"""Tombstone builder: blank entities without the native delete primitive.

The indexer ignores entity deletes, so an entity is "deleted" by removing
every relation that touches it and unsetting every property it holds:

1. one ``DeleteRelation`` per distinct relation ID across all outgoing
   relations (type assignments included, which clears the type badge) and
   all backlinks of every target; the set of seen relation IDs spans the
   whole batch, so a relation between two targets is removed once
2. one ``UpdateEntity(unset=...)`` per entity covering its distinct property IDs

All removals come before all unsets. The entity ID stays resolvable but
returns no properties, relations or backlinks.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from kg_sheet_sync.clients.base import QueryClient
from kg_sheet_sync.config import VALIDATE_BATCH_SIZE
from kg_sheet_sync.models import EntitySnapshot
from kg_sheet_sync.ops import DeleteRelation, OperationBatch, UpdateEntity
from kg_sheet_sync.reconcile.snapshots import fetch_snapshots

logger = logging.getLogger(__name__)


@dataclass
class TombstoneSummary:
    """Counts for a tombstone batch.

    Attributes:
        entities_processed: Snapshots consumed
        relations_to_delete: Outgoing relations removed
        backlinks_to_delete: Incoming relations removed (not already counted as outgoing)
        properties_to_unset: Distinct property IDs unset, summed over entities
    """

    entities_processed: int = 0
    relations_to_delete: int = 0
    backlinks_to_delete: int = 0
    properties_to_unset: int = 0

    @property
    def total_relations(self) -> int:
        return self.relations_to_delete + self.backlinks_to_delete

    def to_dict(self) -> dict[str, int]:
        return {
            "entities_processed": self.entities_processed,
            "relations_to_delete": self.relations_to_delete,
            "backlinks_to_delete": self.backlinks_to_delete,
            "properties_to_unset": self.properties_to_unset,
        }


def build_tombstone_batch(snapshots: Sequence[EntitySnapshot]) -> tuple[OperationBatch, TombstoneSummary]:
    """Build the blanking operations for a set of entities.

    Args:
        snapshots: Live snapshots of every entity to blank

    Returns:
        (batch, summary); the batch holds every DeleteRelation op followed by
        one UpdateEntity unset op per entity that holds values
    """
    batch = OperationBatch()
    summary = TombstoneSummary(entities_processed=len(snapshots))
    seen: set[str] = set()

    for snapshot in snapshots:
        for relation in snapshot.relations:
            if relation.relation_id in seen:
                continue
            seen.add(relation.relation_id)
            batch.ops.append(DeleteRelation(id=relation.relation_id))
            summary.relations_to_delete += 1

        for backlink in snapshot.backlinks:
            if backlink.relation_id in seen:
                continue
            seen.add(backlink.relation_id)
            batch.ops.append(DeleteRelation(id=backlink.relation_id))
            summary.backlinks_to_delete += 1

    for snapshot in snapshots:
        property_ids = snapshot.property_ids
        if not property_ids:
            continue
        batch.ops.append(UpdateEntity(id=snapshot.id, unset=tuple(property_ids)))
        summary.properties_to_unset += len(property_ids)

    batch.summary.relations_deleted = summary.total_relations
    batch.summary.properties_unset = summary.properties_to_unset
    logger.info(
        f"Built {len(batch)} tombstone ops for {summary.entities_processed} entities "
        f"({summary.total_relations} relations, {summary.properties_to_unset} properties)"
    )
    return batch, summary


def fetch_existing_snapshots(
    client: QueryClient,
    entity_ids: Sequence[str],
    space_id: str,
    batch_size: int = VALIDATE_BATCH_SIZE,
) -> list[EntitySnapshot]:
    """Fetch every target, requiring that all of them exist.

    Returns:
        Snapshots in the order of ``entity_ids``

    Raises:
        RemoteFetchError: If a fetch fails for a reason other than "not found"
        EntityNotFoundError: Listing every ID that does not exist in the space
    """
    snapshots = fetch_snapshots(
        client,
        [(entity_id, None) for entity_id in entity_ids],
        space_id,
        batch_size=batch_size,
        label="entity snapshots",
    )
    logger.info(f"All {len(snapshots)} entities validated")
    return [snapshots[entity_id] for entity_id in dict.fromkeys(entity_ids)]
