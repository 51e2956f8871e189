"""Operation types assembled by the reconciliation pipelines."""

from kg_sheet_sync.ops.operations import (
    BatchSummary,
    CreateEntity,
    CreateProperty,
    CreateRelation,
    CreateType,
    DeleteRelation,
    Operation,
    OperationBatch,
    OpType,
    PropertyValueSet,
    UpdateEntity,
)

__all__ = [
    "BatchSummary",
    "CreateEntity",
    "CreateProperty",
    "CreateRelation",
    "CreateType",
    "DeleteRelation",
    "OpType",
    "Operation",
    "OperationBatch",
    "PropertyValueSet",
    "UpdateEntity",
]
