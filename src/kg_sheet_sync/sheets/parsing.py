"""Turn workbook tabs into the typed spreadsheet model.

Tab layout:
- Metadata: Field / Value rows
- Types: Type name, Space, Description, Default properties
- Properties: Property name, Data type, Renderable type, Points to type(s), Description
- Entities to delete: entity IDs in the first column, optional Space ID column
- any other tab: entity rows; the tab name is the default type
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from kg_sheet_sync.config import PLACEHOLDER_SPACE_ID
from kg_sheet_sync.errors import InvalidInputError
from kg_sheet_sync.models import (
    DataType,
    Metadata,
    ParsedSpreadsheet,
    PropertyDefinition,
    SpreadsheetEntity,
    TypeDefinition,
    parse_data_type,
)
from kg_sheet_sync.sheets.tabs import Workbook, find_tab, get_cell, header
from kg_sheet_sync.values import (
    clean_string,
    is_blank,
    is_valid_id,
    normalize_name,
    parse_boolean,
    parse_multi_value_list,
    parse_semicolon_list,
)

logger = logging.getLogger(__name__)

METADATA_TAB = "Metadata"
TYPES_TAB = "Types"
PROPERTIES_TAB = "Properties"
DELETE_TAB = "Entities to delete"

REQUIRED_TABS = (METADATA_TAB, TYPES_TAB, PROPERTIES_TAB)
SPECIAL_TABS = (METADATA_TAB, TYPES_TAB, PROPERTIES_TAB, DELETE_TAB)

ENTITY_NAME_COLUMN = "Entity name"
# Columns of an entity tab that are never property values
RESERVED_ENTITY_COLUMNS = frozenset({"entity name", "types", "type", "avatar url", "cover url"})

# A relation whose targets are places holds one name per cell ("Paris, France")
LOCATION_TYPE_MARKERS = ("city", "country", "place", "location")

SPACE_TYPES = ("Personal", "DAO")

# normalized Field -> Metadata attribute
METADATA_FIELDS = {
    "spaceid": "space_id",
    "spacetype": "space_type",
    "author": "author",
    "sourcedate": "source_date",
    "preparedby": "prepared_by",
    "reviewedby": "reviewed_by",
    "publishedby": "published_by",
    "publishdate": "publish_date",
    "notes": "notes",
    "readyforpublishing": "ready_for_publishing",
    "operationtype": "operation_type",
}


@dataclass
class EntityIdParseResult:
    """IDs read from the delete tab.

    Attributes:
        ids: Valid, lower-cased, distinct IDs in sheet order
        errors: One message per rejected row (malformed or duplicate)
        space_id: Value of the optional Space ID column, if any row sets it
    """

    ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    space_id: str | None = None


def check_required_tabs(workbook: Workbook) -> tuple[list[str], list[str]]:
    """Report which required tabs are present.

    Returns:
        (missing, found); ``missing`` also mentions a missing entity tab
    """
    missing: list[str] = []
    found: list[str] = []
    for required in REQUIRED_TABS:
        if find_tab(workbook, required):
            found.append(required)
        else:
            missing.append(required)

    if not entity_tabs(workbook):
        missing.append("At least one entity tab (any tab other than Metadata, Types, Properties)")
    return missing, found


def entity_tabs(workbook: Workbook) -> list[str]:
    """Every tab that is not a special tab, in workbook order."""
    special = {name.lower() for name in SPECIAL_TABS}
    return [tab for tab in workbook if tab.strip().lower() not in special]


def _string_cell(row: dict[str, Any], column: str) -> str | None:
    return clean_string(get_cell(row, column))


def parse_metadata(rows: list[dict[str, Any]]) -> Metadata:
    """Parse the Field/Value rows of the Metadata tab.

    A blank Space ID becomes the dry-run placeholder; any space type other
    than DAO reads as Personal.
    """
    values: dict[str, Any] = {}
    for row in rows:
        name = _string_cell(row, "Field")
        if not name:
            continue
        attribute = METADATA_FIELDS.get("".join(name.lower().split()))
        if attribute is None:
            logger.debug(f"Ignoring unknown metadata field: {name}")
            continue
        if attribute == "ready_for_publishing":
            values[attribute] = parse_boolean(get_cell(row, "Value"))
        else:
            values[attribute] = _string_cell(row, "Value")

    space_type = values.pop("space_type", None)
    values["space_type"] = "DAO" if space_type and space_type.lower() == "dao" else "Personal"

    if not values.get("space_id"):
        logger.warning("Space ID not set in Metadata tab - using placeholder for dry-run")
        values["space_id"] = PLACEHOLDER_SPACE_ID
    else:
        values["space_id"] = values["space_id"].lower()

    return Metadata(**values)


def parse_types(rows: list[dict[str, Any]]) -> list[TypeDefinition]:
    types = []
    for row in rows:
        name = _string_cell(row, "Type name")
        if not name:
            continue
        types.append(
            TypeDefinition(
                name=name,
                space=_string_cell(row, "Space"),
                description=_string_cell(row, "Description"),
                default_properties=_string_cell(row, "Default properties"),
            )
        )
    logger.debug(f"Parsed {len(types)} types")
    return types


def parse_properties(rows: list[dict[str, Any]]) -> list[PropertyDefinition]:
    """Parse the Properties tab.

    An unrecognised data type falls back to TEXT and keeps the raw cell in
    ``raw_data_type`` so validation can report it.
    """
    properties = []
    for row in rows:
        name = _string_cell(row, "Property name")
        if not name:
            continue
        raw = _string_cell(row, "Data type")
        data_type = parse_data_type(raw)
        properties.append(
            PropertyDefinition(
                name=name,
                data_type=data_type or DataType.TEXT,
                renderable_type=_string_cell(row, "Renderable type"),
                points_to_types=_string_cell(row, "Points to type(s)"),
                description=_string_cell(row, "Description"),
                raw_data_type=raw if data_type is None else None,
            )
        )
    logger.debug(f"Parsed {len(properties)} properties")
    return properties


def is_location_property(prop: PropertyDefinition) -> bool:
    """True if the property's targets are places whose names contain commas."""
    points_to = (prop.points_to_types or "").lower()
    return any(marker in points_to for marker in LOCATION_TYPE_MARKERS)


def parse_entity_tab(
    tab: str,
    rows: list[dict[str, Any]],
    properties: dict[str, PropertyDefinition],
    unnamed_rows: list[tuple[str, int]] | None = None,
) -> list[SpreadsheetEntity]:
    """Parse one entity tab.

    Args:
        tab: Tab name, used as the default type
        rows: Tab records
        properties: Property definitions keyed by normalized name
        unnamed_rows: If given, receives (tab, row) for rows that hold values but no name

    Returns:
        One SpreadsheetEntity per row with a name; blank cells are dropped
    """
    columns = header(rows)
    entities = []

    for row_num, row in enumerate(rows, start=2):  # Row 1 is header
        name = _string_cell(row, ENTITY_NAME_COLUMN)
        if not name:
            if unnamed_rows is not None and any(not is_blank(v) for v in row.values()):
                unnamed_rows.append((tab, row_num))
            continue

        types_raw = _string_cell(row, "Types") or _string_cell(row, "Type")
        entity = SpreadsheetEntity(
            name=name,
            types=parse_semicolon_list(types_raw) if types_raw else [tab],
            source_tab=tab,
            row=row_num,
        )

        for column in columns:
            if normalize_name(column) in RESERVED_ENTITY_COLUMNS:
                continue
            raw = row.get(column)
            if is_blank(raw):
                continue
            value = str(raw).strip()

            prop = properties.get(normalize_name(column))
            if prop is not None and prop.is_relation:
                entity.relations[column] = [value] if is_location_property(prop) else parse_multi_value_list(value)
            else:
                entity.properties[column] = value

        entities.append(entity)

    logger.debug(f"Parsed {len(entities)} entities from tab {tab}")
    return entities


def parse_spreadsheet(workbook: Workbook) -> ParsedSpreadsheet:
    """Parse a curator workbook.

    Raises:
        InvalidInputError: If a required tab is missing
    """
    missing, _ = check_required_tabs(workbook)
    if missing:
        raise InvalidInputError("Spreadsheet is missing required tabs:", missing)

    metadata = parse_metadata(workbook[find_tab(workbook, METADATA_TAB) or METADATA_TAB])
    types = parse_types(workbook[find_tab(workbook, TYPES_TAB) or TYPES_TAB])
    properties = parse_properties(workbook[find_tab(workbook, PROPERTIES_TAB) or PROPERTIES_TAB])

    by_name = {normalize_name(prop.name): prop for prop in properties}
    entities: list[SpreadsheetEntity] = []
    unnamed_rows: list[tuple[str, int]] = []
    for tab in entity_tabs(workbook):
        entities.extend(parse_entity_tab(tab, workbook[tab], by_name, unnamed_rows))

    logger.info(f"Parsed spreadsheet: {len(types)} types, {len(properties)} properties, {len(entities)} entities")
    return ParsedSpreadsheet(
        metadata=metadata, types=types, properties=properties, entities=entities, unnamed_rows=unnamed_rows
    )


def parse_entity_ids(workbook: Workbook, tab_name: str = DELETE_TAB) -> EntityIdParseResult:
    """Read entity IDs from the first column of a tab.

    Cells are trimmed and lower-cased; blank rows are skipped. Malformed and
    repeated IDs are reported as errors rather than dropped.
    """
    result = EntityIdParseResult()
    tab = find_tab(workbook, tab_name)
    if tab is None:
        result.errors.append(f'Tab "{tab_name}" not found in workbook')
        return result

    rows = workbook[tab]
    if not rows:
        result.errors.append("No data rows found (only header row or empty tab)")
        return result

    id_column = header(rows)[0]
    seen: set[str] = set()
    for row_num, row in enumerate(rows, start=2):
        value = clean_string(row.get(id_column))
        if not value:
            continue
        entity_id = value.lower()
        if not is_valid_id(entity_id):
            result.errors.append(f'Row {row_num}: "{value}" is not a valid entity ID (expected 32-char hex string)')
            continue
        if entity_id in seen:
            result.errors.append(f'Row {row_num}: Duplicate entity ID "{entity_id}"')
            continue
        seen.add(entity_id)
        result.ids.append(entity_id)

        space_id = _string_cell(row, "Space ID")
        if space_id and result.space_id is None:
            result.space_id = space_id.lower()
        elif space_id and space_id.lower() != result.space_id:
            result.errors.append(f'Row {row_num}: Space ID "{space_id}" differs from "{result.space_id}"')

    return result
