"""Typed operations handed to the publisher.

Operations are plain data: the reconciliation core assembles them and never
submits them. There is no delete-entity operation: the indexer ignores native
entity deletes, so entities are blanked with relation deletes and property
unsets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from kg_sheet_sync.models import DataType, TypedValue


class OpType(str, Enum):
    CREATE_PROPERTY = "createProperty"
    CREATE_TYPE = "createType"
    CREATE_ENTITY = "createEntity"
    UPDATE_ENTITY = "updateEntity"
    CREATE_RELATION = "createRelation"
    DELETE_RELATION = "deleteRelation"


@dataclass(frozen=True)
class PropertyValueSet:
    """A typed value assigned to a property."""

    property_id: str
    value: TypedValue

    def to_dict(self) -> dict[str, Any]:
        return {"property": self.property_id, **self.value.to_dict()}


@dataclass(frozen=True)
class CreateProperty:
    id: str
    name: str
    data_type: DataType
    description: str | None = None
    op_type: OpType = field(default=OpType.CREATE_PROPERTY, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.op_type.value,
            "id": self.id,
            "name": self.name,
            "dataType": self.data_type.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class CreateType:
    id: str
    name: str
    description: str | None = None
    property_ids: tuple[str, ...] = ()
    op_type: OpType = field(default=OpType.CREATE_TYPE, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.op_type.value,
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "properties": list(self.property_ids),
        }


@dataclass(frozen=True)
class CreateEntity:
    id: str
    name: str
    description: str | None = None
    type_ids: tuple[str, ...] = ()
    values: tuple[PropertyValueSet, ...] = ()
    op_type: OpType = field(default=OpType.CREATE_ENTITY, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.op_type.value,
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "types": list(self.type_ids),
            "values": [v.to_dict() for v in self.values],
        }


@dataclass(frozen=True)
class UpdateEntity:
    """Set values and/or unset properties on an existing entity.

    Attributes:
        id: Entity ID
        values: Values to set
        description: New description, if it changes
        unset: Property IDs whose values are cleared
    """

    id: str
    values: tuple[PropertyValueSet, ...] = ()
    description: str | None = None
    unset: tuple[str, ...] = ()
    op_type: OpType = field(default=OpType.UPDATE_ENTITY, init=False)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.op_type.value, "id": self.id}
        if self.values:
            payload["values"] = [v.to_dict() for v in self.values]
        if self.description is not None:
            payload["description"] = self.description
        if self.unset:
            payload["unset"] = [{"property": property_id} for property_id in self.unset]
        return payload


@dataclass(frozen=True)
class CreateRelation:
    """A relation from one entity to another; ``relation_type`` is the property ID."""

    id: str
    from_entity: str
    to_entity: str
    relation_type: str
    position: str | None = None
    op_type: OpType = field(default=OpType.CREATE_RELATION, init=False)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.op_type.value,
            "id": self.id,
            "fromEntity": self.from_entity,
            "toEntity": self.to_entity,
            "relationType": self.relation_type,
        }
        if self.position is not None:
            payload["position"] = self.position
        return payload


@dataclass(frozen=True)
class DeleteRelation:
    """Remove a relation by the relation's own ID."""

    id: str
    op_type: OpType = field(default=OpType.DELETE_RELATION, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.op_type.value, "id": self.id}


Operation = Union[CreateProperty, CreateType, CreateEntity, UpdateEntity, CreateRelation, DeleteRelation]


@dataclass
class BatchSummary:
    """Counters describing what a batch does."""

    types_created: int = 0
    types_linked: int = 0
    properties_created: int = 0
    properties_linked: int = 0
    entities_created: int = 0
    entities_linked: int = 0
    entities_updated: int = 0
    relations_created: int = 0
    relations_deleted: int = 0
    properties_unset: int = 0
    multi_type_entities: list[tuple[str, list[str]]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "types_created": self.types_created,
            "types_linked": self.types_linked,
            "properties_created": self.properties_created,
            "properties_linked": self.properties_linked,
            "entities_created": self.entities_created,
            "entities_linked": self.entities_linked,
            "entities_updated": self.entities_updated,
            "relations_created": self.relations_created,
            "relations_deleted": self.relations_deleted,
            "properties_unset": self.properties_unset,
            "multi_type_entities": [{"name": name, "types": types} for name, types in self.multi_type_entities],
        }


@dataclass
class OperationBatch:
    """Ordered operations plus summary counters."""

    ops: list[Operation] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)

    def __len__(self) -> int:
        return len(self.ops)

    def count(self, op_type: OpType) -> int:
        return sum(1 for op in self.ops if op.op_type == op_type)

    def to_dict(self) -> dict[str, Any]:
        return {"ops": [op.to_dict() for op in self.ops], "summary": self.summary.to_dict()}
