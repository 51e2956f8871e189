"""Planning pipelines for the three commands.

Each ``plan_*`` function reads, validates, resolves and diffs, then returns a
plan holding the finished operation batch plus everything a report needs.
Planning only reads from the store; publishing a plan is the caller's job.

- upsert: parse -> validate -> resolve (CREATE/LINK) -> relations -> batch
- update: parse -> validate -> resolve existing -> snapshot diff -> batch
- delete: parse IDs -> resolve space -> fetch and require every entity -> tombstone batch
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from kg_sheet_sync.clients.base import QueryClient
from kg_sheet_sync.config import PLACEHOLDER_SPACE_ID
from kg_sheet_sync.errors import InvalidInputError
from kg_sheet_sync.models import DiffSummary, EntityDiff, EntityMap, EntitySnapshot, ParsedSpreadsheet
from kg_sheet_sync.ops import OperationBatch
from kg_sheet_sync.ops.builders import build_tombstone_batch, build_update_batch, build_upsert_batch
from kg_sheet_sync.reconcile.diff import compute_entity_diffs
from kg_sheet_sync.reconcile.relations import RelationToCreate, build_relations
from kg_sheet_sync.reconcile.resolver import ExistingResolution, build_entity_map, resolve_existing
from kg_sheet_sync.reconcile.tombstone import TombstoneSummary, fetch_existing_snapshots
from kg_sheet_sync.sheets.parsing import DELETE_TAB, parse_entity_ids, parse_spreadsheet
from kg_sheet_sync.sheets.tabs import Workbook
from kg_sheet_sync.sheets.validation import ValidationReport, validate_spreadsheet
from kg_sheet_sync.values import is_valid_id

logger = logging.getLogger(__name__)


@dataclass
class UpsertPlan:
    spreadsheet: ParsedSpreadsheet
    validation: ValidationReport
    entity_map: EntityMap
    relations: list[RelationToCreate]
    batch: OperationBatch


@dataclass
class UpdatePlan:
    spreadsheet: ParsedSpreadsheet
    validation: ValidationReport
    resolution: ExistingResolution
    diffs: list[EntityDiff]
    summary: DiffSummary
    batch: OperationBatch
    additive: bool = False

    @property
    def has_changes(self) -> bool:
        return self.summary.has_changes


@dataclass
class TombstonePlan:
    """Blanking plan for the entities listed in the delete tab.

    Attributes:
        space_id: Space the entities are blanked in
        entity_ids: Targets in sheet order
        snapshots: Live state of every target, in the same order
        batch: Removals followed by unsets
        summary: Counts for the batch
    """

    space_id: str
    entity_ids: list[str]
    snapshots: list[EntitySnapshot] = field(default_factory=list)
    batch: OperationBatch = field(default_factory=OperationBatch)
    summary: TombstoneSummary = field(default_factory=TombstoneSummary)


def load_spreadsheet(workbook: Workbook, operation: str) -> tuple[ParsedSpreadsheet, ValidationReport]:
    """Parse and validate a workbook, failing on ERROR issues.

    Raises:
        InvalidInputError: If a required tab is missing
        SpreadsheetValidationError: If validation finds errors
    """
    spreadsheet = parse_spreadsheet(workbook)
    declared = spreadsheet.metadata.operation_type
    if declared and declared.strip().upper() != operation.upper():
        logger.warning(f"Spreadsheet Operation type is '{declared}' but running {operation}. Proceeding.")

    validation = validate_spreadsheet(spreadsheet)
    validation.raise_for_errors()
    return spreadsheet, validation


def plan_upsert(client: QueryClient, workbook: Workbook) -> UpsertPlan:
    """Plan the create/link batch for a workbook.

    Raises:
        SpreadsheetValidationError: If the workbook has validation errors
        UnresolvedReferenceError: If relations point at unknown properties or targets
        RemoteFetchError: If a search fails
    """
    spreadsheet, validation = load_spreadsheet(workbook, "upsert")
    entity_map = build_entity_map(client, spreadsheet)
    relations = build_relations(spreadsheet, entity_map)
    batch = build_upsert_batch(spreadsheet, entity_map, relations)
    return UpsertPlan(spreadsheet, validation, entity_map, relations, batch)


def plan_update(client: QueryClient, workbook: Workbook, additive: bool = False) -> UpdatePlan:
    """Plan the update batch: diff every row against the entity's live state.

    Args:
        client: Query client
        workbook: Curator workbook
        additive: Only add relations, never remove live ones

    Raises:
        InvalidInputError: If the Metadata tab has no Space ID
        SpreadsheetValidationError: If the workbook has validation errors
        UnresolvedReferenceError: If any row, relation target or used property is unknown
        RemoteFetchError: If a search or snapshot fetch fails
        EntityNotFoundError: If a resolved entity has no state in the space
    """
    spreadsheet, validation = load_spreadsheet(workbook, "update")
    space_id = spreadsheet.metadata.space_id
    if space_id == PLACEHOLDER_SPACE_ID:
        raise InvalidInputError("Space ID is required in the Metadata tab to update entities.")

    resolution = resolve_existing(client, spreadsheet)
    diffs, summary = compute_entity_diffs(
        client, spreadsheet.entities, resolution.entities, resolution.properties, space_id, additive=additive
    )
    batch = build_update_batch(diffs)
    return UpdatePlan(spreadsheet, validation, resolution, diffs, summary, batch, additive)


def resolve_delete_space(flag_space: str | None, sheet_space: str | None) -> str:
    """Pick the space for a delete run.

    The ``--space`` flag and the sheet's Space ID column may both be given
    only if they agree.

    Raises:
        InvalidInputError: On a conflict, a missing space, or a malformed ID
    """
    flag = flag_space.strip().lower() if flag_space else None
    sheet = sheet_space.strip().lower() if sheet_space else None
    if flag and sheet and flag != sheet:
        raise InvalidInputError(f'Space ID mismatch: --space "{flag}" differs from the sheet\'s Space ID "{sheet}"')
    space_id = flag or sheet
    if not space_id:
        raise InvalidInputError('No space ID found. Provide --space or include a "Space ID" column in the sheet.')
    if not is_valid_id(space_id):
        raise InvalidInputError(f'Invalid space ID "{space_id}" (expected 32-char hex string)')
    return space_id


def parse_delete_targets(workbook: Workbook, space: str | None = None) -> tuple[list[str], str]:
    """Read and check the delete tab.

    Returns:
        (entity IDs, space ID)

    Raises:
        InvalidInputError: On malformed or duplicate IDs, an empty tab, or a bad space
    """
    parsed = parse_entity_ids(workbook, DELETE_TAB)
    if parsed.errors:
        raise InvalidInputError("Entity ID parsing errors:", parsed.errors)
    if not parsed.ids:
        raise InvalidInputError("No entity IDs found in the spreadsheet.")
    return parsed.ids, resolve_delete_space(space, parsed.space_id)


def plan_tombstone(client: QueryClient, workbook: Workbook, space: str | None = None) -> TombstonePlan:
    """Plan blanking every entity listed in the delete tab.

    Every ID must exist in the space before any operation is built.

    Raises:
        InvalidInputError: On bad input (see ``parse_delete_targets``)
        EntityNotFoundError: Listing every ID that does not exist
        RemoteFetchError: If a fetch fails
    """
    entity_ids, space_id = parse_delete_targets(workbook, space)
    logger.info(f"Parsed {len(entity_ids)} entity IDs for space {space_id}")

    snapshots = fetch_existing_snapshots(client, entity_ids, space_id)
    batch, summary = build_tombstone_batch(snapshots)
    return TombstonePlan(space_id, entity_ids, snapshots, batch, summary)
