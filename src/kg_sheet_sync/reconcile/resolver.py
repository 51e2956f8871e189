"""Identity resolution: decide CREATE or LINK for every name in a workbook.

Names are matched against the remote store by exact normalized name. Every
name is searched in the root space and, when the workbook names a real target
space, in that space too. Tiebreak policy, in order:

1. a hit in the target space beats any root-space hit
2. among several hits in one space, the first whose type names overlap the
   caller's type hints
3. otherwise the first hit in API order

No hit means CREATE with a freshly minted ID; a hit means LINK with the hit's
ID and type assignments. The upsert pipeline uses ``build_entity_map``; the
update pipeline uses ``resolve_existing``, where a missing name is an error and
every missing name is reported together.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from kg_sheet_sync.batching import chunked, run_in_batches
from kg_sheet_sync.clients.base import ClientError, QueryClient
from kg_sheet_sync.config import PLACEHOLDER_SPACE_ID, RESOLVE_BATCH_SIZE
from kg_sheet_sync.errors import ReferenceRole, RemoteFetchError, UnresolvedReference, UnresolvedReferenceError
from kg_sheet_sync.models import (
    EntityMap,
    ParsedSpreadsheet,
    PropertyDefinition,
    RemoteEntity,
    ResolutionAction,
    ResolutionEntry,
    ResolutionMap,
    ResolvedProperty,
)
from kg_sheet_sync.values import generate_id, is_valid_id, normalize_name, parse_multi_value_list

logger = logging.getLogger(__name__)

# Type names carried by schema entities in the store
TYPE_HINT = "Type"
PROPERTY_HINT = "Property"

DESCRIPTION_COLUMN = "description"


def is_valid_target_space(space_id: str | None) -> bool:
    """True when ``space_id`` is a real space ID rather than blank or the dry-run placeholder."""
    return bool(space_id and space_id != PLACEHOLDER_SPACE_ID and is_valid_id(space_id))


def pick_match(hits: Sequence[RemoteEntity], type_hints: Iterable[str] = ()) -> RemoteEntity | None:
    """Choose one hit among same-name candidates.

    Prefers the first hit whose type names overlap ``type_hints``; falls back to
    the first hit.
    """
    if not hits:
        return None
    if len(hits) == 1:
        return hits[0]

    wanted = {normalize_name(hint) for hint in type_hints if hint}
    if wanted:
        for hit in hits:
            if wanted & {normalize_name(name) for name in hit.type_names}:
                logger.debug(f'Ambiguous name "{hit.name}": {len(hits)} candidates, picked {hit.id} by type')
                return hit
    logger.debug(f'Ambiguous name "{hits[0].name}": {len(hits)} candidates, picked first ({hits[0].id})')
    return hits[0]


def _unique_names(names: Iterable[str]) -> list[str]:
    """Deduplicate by normalized key, keeping the first spelling."""
    seen: dict[str, str] = {}
    for name in names:
        key = normalize_name(name)
        if key and key not in seen:
            seen[key] = name.strip()
    return list(seen.values())


def search_entities_by_names(
    client: QueryClient,
    names: Iterable[str],
    type_hints: Mapping[str, Sequence[str]] | None = None,
    target_space_id: str | None = None,
    batch_size: int = RESOLVE_BATCH_SIZE,
) -> dict[str, RemoteEntity]:
    """Look up names in the root space and (if valid) the target space.

    Args:
        client: Remote query client
        names: Names to look up; duplicates by normalized name are searched once
        type_hints: Normalized name -> type names used to break ties
        target_space_id: Space whose matches take precedence over root matches
        batch_size: Names per concurrent batch

    Returns:
        Normalized name -> chosen hit, for names that matched

    Raises:
        RemoteFetchError: If any search fails; a failed search is never
            treated as "no match", which would mint a duplicate entity
    """
    unique = _unique_names(names)
    results: dict[str, RemoteEntity] = {}
    if not unique:
        return results

    hints = type_hints or {}
    spaces: list[str | None] = [client.root_space_id]
    if is_valid_target_space(target_space_id):
        spaces.append(target_space_id)
    else:
        logger.debug("No valid target space ID, searching root space only")

    logger.info(f"Searching for {len(unique)} names in the remote store...")

    def search(task: tuple[str, str | None]) -> list[RemoteEntity] | ClientError:
        name, space_id = task
        return client.search_by_name(name, space_id)

    processed = 0
    for batch in chunked(unique, batch_size):
        tasks = [(name, space_id) for name in batch for space_id in spaces]
        outcomes = run_in_batches(tasks, search, batch_size=len(tasks), label="searches")

        stride = len(spaces)
        for i, name in enumerate(batch):
            per_space: list[list[RemoteEntity]] = []
            for outcome in outcomes[i * stride : (i + 1) * stride]:
                if isinstance(outcome, ClientError):
                    raise RemoteFetchError(name, outcome, action="search for")
                per_space.append(outcome)

            key = normalize_name(name)
            name_hints = hints.get(key, ())
            # Target space (last) first, then root
            match = None
            for hits in reversed(per_space):
                match = pick_match(hits, name_hints)
                if match is not None:
                    break
            if match is not None:
                results[key] = match

        processed += len(batch)
        if len(unique) > batch_size:
            logger.info(f"Searched {processed}/{len(unique)} names...")

    logger.info(f"Found {len(results)}/{len(unique)} existing matches")
    return results


# =============================================================================
# Entries
# =============================================================================


def link_entry(name: str, hit: RemoteEntity, source_tab: str | None = None) -> ResolutionEntry:
    return ResolutionEntry(
        name=name,
        id=hit.id,
        action=ResolutionAction.LINK,
        types=tuple(hit.type_names),
        type_ids=tuple(hit.type_ids),
        source_tab=source_tab or None,
    )


def create_entry(
    name: str,
    types: Sequence[str] = (),
    type_ids: Sequence[str] = (),
    source_tab: str | None = None,
) -> ResolutionEntry:
    return ResolutionEntry(
        name=name,
        id=generate_id(),
        action=ResolutionAction.CREATE,
        types=tuple(types),
        type_ids=tuple(type_ids),
        source_tab=source_tab or None,
    )


def resolve_names(
    client: QueryClient,
    names: Iterable[str],
    type_hints: Mapping[str, Sequence[str]] | None = None,
    target_space_id: str | None = None,
) -> ResolutionMap:
    """Resolve bare names to CREATE/LINK entries.

    Names differing only in case or whitespace share one entry.
    """
    unique = _unique_names(names)
    found = search_entities_by_names(client, unique, type_hints, target_space_id)
    resolved: ResolutionMap = {}
    for name in unique:
        key = normalize_name(name)
        hit = found.get(key)
        resolved[key] = link_entry(name, hit) if hit else create_entry(name)
    return resolved


# =============================================================================
# Workbook-level resolution
# =============================================================================


@dataclass
class _PendingEntity:
    name: str
    types: list[str] = field(default_factory=list)
    source_tab: str = ""


def _collect_entities(spreadsheet: ParsedSpreadsheet) -> dict[str, _PendingEntity]:
    """Rows first (types merged across tabs), then relation targets without rows."""
    pending: dict[str, _PendingEntity] = {}
    for row in spreadsheet.entities:
        key = normalize_name(row.name)
        entry = pending.get(key)
        if entry is None:
            types = list(dict.fromkeys(row.types))
            pending[key] = _PendingEntity(name=row.name.strip(), types=types, source_tab=row.source_tab)
            continue
        for type_name in row.types:
            if type_name not in entry.types:
                entry.types.append(type_name)

    for row in spreadsheet.entities:
        for targets in row.relations.values():
            for target in targets:
                key = normalize_name(target)
                if key and key not in pending:
                    pending[key] = _PendingEntity(name=target.strip())
    return pending


def _target_type_hints(spreadsheet: ParsedSpreadsheet) -> dict[str, list[str]]:
    """Relation target name -> the property's "points to" types."""
    definitions = {normalize_name(p.name): p for p in spreadsheet.properties}
    hints: dict[str, list[str]] = {}
    for row in spreadsheet.entities:
        for column, targets in row.relations.items():
            definition = definitions.get(normalize_name(column))
            if definition is None or not definition.points_to_types:
                continue
            for target in targets:
                bucket = hints.setdefault(normalize_name(target), [])
                bucket.extend(t for t in parse_multi_value_list(definition.points_to_types) if t not in bucket)
    return hints


def _schema_hints(names: Iterable[str], hint: str) -> dict[str, list[str]]:
    return {normalize_name(name): [hint] for name in names}


def build_entity_map(client: QueryClient, spreadsheet: ParsedSpreadsheet) -> EntityMap:
    """Resolve every type, property and entity in a workbook (upsert pipeline).

    Entity names include every row and every relation target. Rows sharing a
    normalized name across tabs become one entity whose declared types are
    merged. Types and properties are looked up in the root space only.
    """
    entity_map = EntityMap()
    space_id = spreadsheet.metadata.space_id

    type_names = [t.name for t in spreadsheet.types]
    found_types = search_entities_by_names(client, type_names, _schema_hints(type_names, TYPE_HINT))
    created = linked = 0
    for type_def in spreadsheet.types:
        key = normalize_name(type_def.name)
        if key in entity_map.types:
            continue
        hit = found_types.get(key)
        if hit:
            entity_map.types[key] = ResolutionEntry(name=type_def.name, id=hit.id, action=ResolutionAction.LINK)
            linked += 1
            logger.debug(f"Type: {type_def.name} -> LINK ({hit.id})")
        else:
            entity_map.types[key] = create_entry(type_def.name)
            created += 1
            logger.debug(f"Type: {type_def.name} -> CREATE")
    logger.info(f"Processed {len(entity_map.types)} types: {created} to create, {linked} to link")

    property_names = [p.name for p in spreadsheet.properties]
    found_properties = search_entities_by_names(client, property_names, _schema_hints(property_names, PROPERTY_HINT))
    created = linked = 0
    for prop in spreadsheet.properties:
        key = normalize_name(prop.name)
        if key in entity_map.properties:
            continue
        hit = found_properties.get(key)
        action = ResolutionAction.LINK if hit else ResolutionAction.CREATE
        entity_map.properties[key] = ResolvedProperty(
            name=prop.name,
            id=hit.id if hit else generate_id(),
            action=action,
            definition=prop,
        )
        if hit:
            linked += 1
        else:
            created += 1
        logger.debug(f"Property: {prop.name} -> {action.value}")
    logger.info(f"Processed {len(entity_map.properties)} properties: {created} to create, {linked} to link")

    pending = _collect_entities(spreadsheet)
    hints: dict[str, list[str]] = _target_type_hints(spreadsheet)
    for key, entry in pending.items():
        if entry.types:
            hints[key] = entry.types
    logger.info(f"Found {len(pending)} unique entity names")
    found_entities = search_entities_by_names(client, [p.name for p in pending.values()], hints, space_id)

    created = linked = 0
    for key, entry in pending.items():
        hit = found_entities.get(key)
        if hit:
            entity_map.entities[key] = link_entry(entry.name, hit, entry.source_tab)
            linked += 1
            logger.debug(f"Entity: {entry.name} -> LINK ({hit.id})")
            continue

        type_ids = []
        for type_name in entry.types:
            resolved_type = entity_map.types.get(normalize_name(type_name))
            if resolved_type is None:
                logger.warning(f'Entity "{entry.name}" declares type "{type_name}" which is not in the Types tab')
                continue
            type_ids.append(resolved_type.id)
        if not entry.types:
            logger.warning(f'Entity "{entry.name}" has no types - may be a relation target not in the spreadsheet')
        entity_map.entities[key] = create_entry(entry.name, entry.types, type_ids, entry.source_tab)
        created += 1
        logger.debug(f"Entity: {entry.name} -> CREATE")
    logger.info(f"Processed {len(pending)} entities: {created} to create, {linked} to link")

    for name, types in multi_type_entities(entity_map):
        logger.info(f"Multi-type entity: {name}: {', '.join(types)}")
    return entity_map


def multi_type_entities(entity_map: EntityMap) -> list[tuple[str, list[str]]]:
    """Entities carrying more than one type, as (name, type names)."""
    return [(e.name, list(e.types)) for e in entity_map.entities.values() if len(e.types) > 1]


@dataclass
class ExistingResolution:
    """Resolution result for the update pipeline.

    Attributes:
        entities: Normalized name -> LINK entry, for rows and relation targets
        properties: Normalized property name -> resolved property
    """

    entities: ResolutionMap = field(default_factory=dict)
    properties: dict[str, ResolvedProperty] = field(default_factory=dict)


def _used_property_columns(spreadsheet: ParsedSpreadsheet) -> set[str]:
    used: set[str] = set()
    for row in spreadsheet.entities:
        used.update(normalize_name(col) for col, value in row.properties.items() if value and value.strip())
        used.update(normalize_name(col) for col, targets in row.relations.items() if targets)
    used.discard(DESCRIPTION_COLUMN)
    return used


def resolve_existing(client: QueryClient, spreadsheet: ParsedSpreadsheet) -> ExistingResolution:
    """Resolve every row, relation target and used property to an existing ID.

    Nothing is created: any name without a match is collected, and once all
    lookups have finished a single ``UnresolvedReferenceError`` names every
    one of them. No snapshot is fetched before this returns.

    Raises:
        UnresolvedReferenceError: If any row, relation target or used property
            is unknown to the store
        RemoteFetchError: If a search fails
    """
    space_id = spreadsheet.metadata.space_id
    definitions: dict[str, PropertyDefinition] = {normalize_name(p.name): p for p in spreadsheet.properties}

    row_names = _unique_names(row.name for row in spreadsheet.entities)
    row_keys = {normalize_name(name) for name in row_names}
    target_contexts: dict[str, tuple[str, str]] = {}
    for row in spreadsheet.entities:
        for column, targets in row.relations.items():
            for target in targets:
                key = normalize_name(target)
                if key and key not in row_keys and key not in target_contexts:
                    target_contexts[key] = (target.strip(), f'Entity "{row.name}" via {column}')

    hints: dict[str, list[str]] = _target_type_hints(spreadsheet)
    pending = _collect_entities(spreadsheet)
    for key, entry in pending.items():
        if entry.types:
            hints[key] = entry.types

    all_names = row_names + [name for name, _ in target_contexts.values()]
    logger.info(f"Resolving {len(all_names)} entity/relation target names...")
    found = search_entities_by_names(client, all_names, hints, space_id)

    used_columns = sorted(_used_property_columns(spreadsheet) & definitions.keys())
    property_names = [definitions[key].name for key in used_columns]
    found_properties = search_entities_by_names(
        client, property_names, _schema_hints(property_names, PROPERTY_HINT), space_id
    )

    missing: list[UnresolvedReference] = []
    resolution = ExistingResolution()
    for name in row_names:
        key = normalize_name(name)
        hit = found.get(key)
        if hit is None:
            missing.append(UnresolvedReference(name, ReferenceRole.ENTITY, pending[key].source_tab or None))
        else:
            resolution.entities[key] = link_entry(name, hit, pending[key].source_tab)
    for key, (name, context) in target_contexts.items():
        hit = found.get(key)
        if hit is None:
            missing.append(UnresolvedReference(name, ReferenceRole.RELATION_TARGET, context))
        else:
            resolution.entities[key] = link_entry(name, hit)
    for key in used_columns:
        definition = definitions[key]
        hit = found_properties.get(key)
        if hit is None:
            missing.append(UnresolvedReference(definition.name, ReferenceRole.PROPERTY))
        else:
            resolution.properties[key] = ResolvedProperty(
                name=definition.name, id=hit.id, action=ResolutionAction.LINK, definition=definition
            )

    if missing:
        raise UnresolvedReferenceError(
            missing,
            hint=(
                "Every entity, relation target and property must exist before updating. "
                'Use "upsert" to create them first.'
            ),
        )

    logger.info(f"All {len(all_names)} names and {len(resolution.properties)} properties resolved")
    return resolution
