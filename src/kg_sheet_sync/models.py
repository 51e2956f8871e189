"""Domain models shared by the three reconciliation pipelines.

The spreadsheet side (metadata, type / property definitions, entity rows), the
remote side (search hits and entity snapshots) and the reconciliation outputs
(resolution entries, property / relation / entity diffs) all live here so the
resolver, diff engine and tombstone builder agree on one vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DataType(str, Enum):
    """Declared kind of a property."""

    TEXT = "TEXT"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    DATE = "DATE"
    TIME = "TIME"
    DATETIME = "DATETIME"
    BOOLEAN = "BOOLEAN"
    RELATION = "RELATION"
    POINT = "POINT"
    SCHEDULE = "SCHEDULE"


# Spreadsheet aliases -> canonical data type names
DATA_TYPE_ALIASES: dict[str, DataType] = {
    "INT": DataType.INTEGER,
    "INT64": DataType.INTEGER,
    "FLOAT64": DataType.FLOAT,
    "DOUBLE": DataType.FLOAT,
    "DECIMAL": DataType.FLOAT,
    "BOOL": DataType.BOOLEAN,
}


def parse_data_type(raw: str | None) -> DataType | None:
    """Map a 'Data type' cell to a DataType, honouring aliases.

    Blank cells default to TEXT; unknown names return None.
    """
    if raw is None or not raw.strip():
        return DataType.TEXT
    upper = raw.strip().upper()
    if upper in DATA_TYPE_ALIASES:
        return DATA_TYPE_ALIASES[upper]
    try:
        return DataType(upper)
    except ValueError:
        return None


class ResolutionAction(str, Enum):
    """Outcome of resolving a name against the remote store."""

    CREATE = "CREATE"  # mint a new identifier
    LINK = "LINK"  # reuse a discovered identifier


class DiffKind(str, Enum):
    SET = "set"
    UNCHANGED = "unchanged"


class DiffStatus(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"


# =============================================================================
# Spreadsheet side
# =============================================================================


@dataclass
class Metadata:
    """Contents of the Metadata tab (Field/Value layout)."""

    space_id: str
    space_type: str = "Personal"
    author: str | None = None
    source_date: str | None = None
    prepared_by: str | None = None
    reviewed_by: str | None = None
    published_by: str | None = None
    publish_date: str | None = None
    notes: str | None = None
    ready_for_publishing: bool | None = None
    operation_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "space_id": self.space_id,
            "space_type": self.space_type,
            "author": self.author,
            "source_date": self.source_date,
            "prepared_by": self.prepared_by,
            "reviewed_by": self.reviewed_by,
            "published_by": self.published_by,
            "publish_date": self.publish_date,
            "notes": self.notes,
            "ready_for_publishing": self.ready_for_publishing,
            "operation_type": self.operation_type,
        }


@dataclass
class TypeDefinition:
    """A row of the Types tab."""

    name: str
    space: str | None = None
    description: str | None = None
    default_properties: str | None = None


@dataclass
class PropertyDefinition:
    """A row of the Properties tab.

    Attributes:
        name: Property name as written by the curator
        data_type: Declared kind
        renderable_type: Optional rendering hint (e.g., URL)
        points_to_types: For RELATION properties, comma/semicolon separated type names
        description: Free-text description
        raw_data_type: The "Data type" cell as written, when it named no known kind
    """

    name: str
    data_type: DataType = DataType.TEXT
    renderable_type: str | None = None
    points_to_types: str | None = None
    description: str | None = None
    raw_data_type: str | None = None

    @property
    def is_relation(self) -> bool:
        return self.data_type == DataType.RELATION


@dataclass
class SpreadsheetEntity:
    """One row from an entity tab.

    Attributes:
        name: Entity name as written
        types: Declared type names (tab name unless a Types column overrides it)
        properties: Scalar column name -> raw cell text
        relations: Relation column name -> target entity names
        source_tab: Tab the row came from
        row: 1-indexed sheet row (header is row 1)
    """

    name: str
    types: list[str] = field(default_factory=list)
    properties: dict[str, str] = field(default_factory=dict)
    relations: dict[str, list[str]] = field(default_factory=dict)
    source_tab: str = ""
    row: int | None = None


@dataclass
class ParsedSpreadsheet:
    """All tabs of a curator workbook, already split into typed rows."""

    metadata: Metadata
    types: list[TypeDefinition] = field(default_factory=list)
    properties: list[PropertyDefinition] = field(default_factory=list)
    entities: list[SpreadsheetEntity] = field(default_factory=list)
    # (tab, row) of entity rows with values but no Entity name
    unnamed_rows: list[tuple[str, int]] = field(default_factory=list)


# =============================================================================
# Remote side
# =============================================================================


@dataclass(frozen=True)
class TypeRef:
    """A type assignment as reported by the remote store."""

    id: str
    name: str | None = None


@dataclass(frozen=True)
class RemoteEntity:
    """A search hit from the remote store."""

    id: str
    name: str
    types: tuple[TypeRef, ...] = ()
    space_ids: tuple[str, ...] = ()

    @property
    def type_ids(self) -> list[str]:
        return [t.id for t in self.types]

    @property
    def type_names(self) -> list[str]:
        return [t.name for t in self.types if t.name]


@dataclass(frozen=True)
class PropertyValue:
    """A live property value; exactly one typed field is normally populated."""

    property_id: str
    text: str | None = None
    boolean: bool | None = None
    number: float | None = None
    datetime: str | None = None
    point: str | None = None
    schedule: str | None = None


@dataclass(frozen=True)
class OutgoingRelation:
    """A relation from the snapshot entity. ``type_id`` is the defining property ID."""

    relation_id: str
    type_id: str
    target_id: str
    target_name: str | None = None


@dataclass(frozen=True)
class IncomingRelation:
    """A backlink pointing at the snapshot entity."""

    relation_id: str
    type_id: str
    source_id: str
    source_name: str | None = None


@dataclass(frozen=True)
class EntitySnapshot:
    """Live state of one entity within one space, fetched fresh per run."""

    id: str
    name: str | None
    type_ids: tuple[str, ...] = ()
    values: tuple[PropertyValue, ...] = ()
    relations: tuple[OutgoingRelation, ...] = ()
    backlinks: tuple[IncomingRelation, ...] = ()

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def property_ids(self) -> list[str]:
        """Distinct property IDs holding values, in first-seen order."""
        return list(dict.fromkeys(v.property_id for v in self.values))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization (pre-deletion snapshots)."""
        return {
            "id": self.id,
            "name": self.name,
            "type_ids": list(self.type_ids),
            "values": [{k: v for k, v in vars(value).items() if v is not None} for value in self.values],
            "relations": [vars(r) for r in self.relations],
            "backlinks": [vars(b) for b in self.backlinks],
        }


# =============================================================================
# Reconciliation outputs
# =============================================================================


@dataclass(frozen=True)
class ResolutionEntry:
    """Immutable result of resolving one normalized name.

    Attributes:
        name: Display name (first spelling seen)
        id: Resolved or freshly minted identifier
        types: Declared type names (CREATE) or discovered type names (LINK)
        type_ids: Resolved type IDs
        action: CREATE or LINK
        source_tab: Tab that declared the row, if any
    """

    name: str
    id: str
    action: ResolutionAction
    types: tuple[str, ...] = ()
    type_ids: tuple[str, ...] = ()
    source_tab: str | None = None

    @property
    def is_link(self) -> bool:
        return self.action == ResolutionAction.LINK


@dataclass(frozen=True)
class ResolvedProperty:
    """A property resolved to an ID, paired with its spreadsheet definition."""

    name: str
    id: str
    action: ResolutionAction
    definition: PropertyDefinition

    @property
    def is_link(self) -> bool:
        return self.action == ResolutionAction.LINK


# normalized name -> entry
ResolutionMap = dict[str, ResolutionEntry]


@dataclass
class EntityMap:
    """Resolution results for a whole workbook (create pipeline)."""

    entities: ResolutionMap = field(default_factory=dict)
    types: ResolutionMap = field(default_factory=dict)
    properties: dict[str, ResolvedProperty] = field(default_factory=dict)


@dataclass(frozen=True)
class TypedValue:
    """A value in the store's typed wire shape.

    ``value`` holds the scalar for every kind except POINT, which uses lat/lon.
    """

    type: str
    value: str | int | float | bool | None = None
    lat: float | None = None
    lon: float | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.type == "point":
            return {"type": self.type, "lat": self.lat, "lon": self.lon}
        return {"type": self.type, "value": self.value}


@dataclass
class PropertyDiff:
    """Scalar comparison result for one non-blank cell."""

    property_id: str
    property_name: str
    kind: DiffKind
    previous: str | None = None
    next: str | None = None
    typed_value: TypedValue | None = None


@dataclass(frozen=True)
class RelationTarget:
    entity_id: str
    entity_name: str


@dataclass(frozen=True)
class RelationRemoval:
    """A live relation to delete, keyed by the relation's own ID."""

    relation_id: str
    entity_id: str
    entity_name: str


@dataclass
class RelationDiff:
    """Set comparison of desired vs live targets for one relation property."""

    property_id: str
    property_name: str
    to_add: list[RelationTarget] = field(default_factory=list)
    to_remove: list[RelationRemoval] = field(default_factory=list)
    unchanged: list[RelationTarget] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_add or self.to_remove)


@dataclass
class EntityDiff:
    """All changes for one entity.

    ``scalar_changes`` and ``relation_changes`` only hold entries that change
    something; unchanged entries are counted.
    """

    entity_id: str
    entity_name: str
    status: DiffStatus
    scalar_changes: list[PropertyDiff] = field(default_factory=list)
    relation_changes: list[RelationDiff] = field(default_factory=list)
    description_change: PropertyDiff | None = None
    unchanged_scalar_count: int = 0
    unchanged_relation_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        scalars = list(self.scalar_changes)
        if self.description_change is not None:
            scalars.append(self.description_change)
        return {
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "status": self.status.value,
            "scalar_changes": [
                {
                    "property_id": c.property_id,
                    "property_name": c.property_name,
                    "old_value": c.previous,
                    "new_value": c.next,
                }
                for c in scalars
            ],
            "relation_changes": [
                {
                    "property_id": r.property_id,
                    "property_name": r.property_name,
                    "added": [{"id": t.entity_id, "name": t.entity_name} for t in r.to_add],
                    "removed": [
                        {"id": t.entity_id, "name": t.entity_name, "relation_id": t.relation_id} for t in r.to_remove
                    ],
                }
                for r in self.relation_changes
            ],
            "unchanged_scalar_count": self.unchanged_scalar_count,
            "unchanged_relation_count": self.unchanged_relation_count,
        }


@dataclass
class DiffSummary:
    total_entities: int = 0
    entities_with_changes: int = 0
    entities_skipped: int = 0
    total_scalar_changes: int = 0
    total_relations_added: int = 0
    total_relations_removed: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.total_scalar_changes or self.total_relations_added or self.total_relations_removed)

    def to_dict(self) -> dict[str, int]:
        return {
            "total_entities": self.total_entities,
            "entities_with_changes": self.entities_with_changes,
            "entities_skipped": self.entities_skipped,
            "total_scalar_changes": self.total_scalar_changes,
            "total_relations_added": self.total_relations_added,
            "total_relations_removed": self.total_relations_removed,
        }
