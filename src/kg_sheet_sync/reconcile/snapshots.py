"""Bounded-concurrency snapshot fetching shared by the patch and tombstone pipelines."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from kg_sheet_sync.batching import chunked, run_in_batches
from kg_sheet_sync.clients.base import ClientError, QueryClient
from kg_sheet_sync.config import SNAPSHOT_BATCH_SIZE
from kg_sheet_sync.errors import EntityNotFoundError, RemoteFetchError
from kg_sheet_sync.models import EntitySnapshot

logger = logging.getLogger(__name__)


def fetch_snapshots(
    client: QueryClient,
    targets: Sequence[tuple[str, str | None]],
    space_id: str,
    batch_size: int = SNAPSHOT_BATCH_SIZE,
    label: str = "entity details",
) -> dict[str, EntitySnapshot]:
    """Fetch live snapshots, at most ``batch_size`` in flight.

    A failed fetch stops the run as soon as its batch completes; no later
    batch is started. IDs the store reports as absent are collected across
    all batches and reported together.

    Args:
        client: Remote query client
        targets: (entity ID, display name or None) pairs; duplicate IDs are fetched once
        space_id: Space whose values and relations are read
        batch_size: Fetches in flight at once
        label: Noun used in progress messages

    Returns:
        Entity ID -> snapshot for every target

    Raises:
        RemoteFetchError: On the first fetch that fails for any reason but "not found"
        EntityNotFoundError: If the store reports any target as absent
    """
    unique = list({entity_id: name for entity_id, name in targets}.items())
    logger.info(f"Fetching {label} for {len(unique)} entities...")

    snapshots: dict[str, EntitySnapshot] = {}
    not_found: list[str] = []
    done = 0
    for batch in chunked(unique, batch_size):
        results = run_in_batches(
            batch,
            lambda target: client.fetch_entity_snapshot(target[0], space_id),
            batch_size=batch_size,
            label=label,
        )
        for (entity_id, name), result in zip(batch, results):
            if isinstance(result, ClientError):
                if result.is_not_found:
                    not_found.append(entity_id)
                    continue
                raise RemoteFetchError(entity_id, result, entity_name=name)
            snapshots[entity_id] = result

        done += len(batch)
        if len(unique) > batch_size:
            logger.info(f"Fetched {done}/{len(unique)} {label}...")

    if not_found:
        raise EntityNotFoundError(not_found, space_id)
    return snapshots
