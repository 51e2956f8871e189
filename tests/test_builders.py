"""Tests for operation batch builders."""

from kg_sheet_sync.models import (
    DataType,
    DiffKind,
    DiffStatus,
    EntityDiff,
    EntityMap,
    Metadata,
    ParsedSpreadsheet,
    PropertyDefinition,
    PropertyDiff,
    RelationDiff,
    RelationRemoval,
    RelationTarget,
    ResolutionAction,
    ResolutionEntry,
    ResolvedProperty,
    SpreadsheetEntity,
    TypedValue,
    TypeDefinition,
)
from kg_sheet_sync.ops import CreateEntity, CreateProperty, CreateRelation, CreateType, DeleteRelation, OpType
from kg_sheet_sync.ops.builders import build_update_batch, build_upsert_batch
from kg_sheet_sync.reconcile.relations import build_relations

COMPANY_ID = "c" * 32
FOUNDED_ID = "a" * 32
EMPLOYEES_ID = "b" * 32
OFFICES_ID = "d" * 32


def _upsert_inputs() -> tuple[ParsedSpreadsheet, EntityMap]:
    founded = PropertyDefinition(name="Founded", data_type=DataType.DATE)
    employees = PropertyDefinition(name="Employees", data_type=DataType.INTEGER)
    offices = PropertyDefinition(name="Offices", data_type=DataType.RELATION, points_to_types="City")
    spreadsheet = ParsedSpreadsheet(
        metadata=Metadata(space_id="5" * 32),
        types=[TypeDefinition(name="Company", default_properties="Founded; Employees")],
        properties=[founded, employees, offices],
        entities=[
            SpreadsheetEntity(
                name="Acme",
                types=["Company"],
                properties={"Founded": "Jan 15, 2024", "Employees": "lots", "Description": "Anvils"},
                relations={"Offices": ["Paris", "Atlantis"]},
                source_tab="Company",
            ),
            SpreadsheetEntity(name="Globex", types=["Company"], source_tab="Company"),
        ],
    )

    entity_map = EntityMap()
    entity_map.types["company"] = ResolutionEntry(name="Company", id=COMPANY_ID, action=ResolutionAction.CREATE)
    entity_map.properties["founded"] = ResolvedProperty("Founded", FOUNDED_ID, ResolutionAction.CREATE, founded)
    entity_map.properties["employees"] = ResolvedProperty("Employees", EMPLOYEES_ID, ResolutionAction.CREATE, employees)
    entity_map.properties["offices"] = ResolvedProperty("Offices", OFFICES_ID, ResolutionAction.LINK, offices)
    entity_map.entities["acme"] = ResolutionEntry(
        name="Acme", id="1" * 32, action=ResolutionAction.CREATE, types=("Company",), type_ids=(COMPANY_ID,)
    )
    entity_map.entities["globex"] = ResolutionEntry(name="Globex", id="2" * 32, action=ResolutionAction.LINK)
    entity_map.entities["paris"] = ResolutionEntry(name="Paris", id="3" * 32, action=ResolutionAction.LINK)
    entity_map.entities["atlantis"] = ResolutionEntry(name="Atlantis", id="4" * 32, action=ResolutionAction.CREATE)
    return spreadsheet, entity_map


class TestBuildUpsertBatch:
    """Tests for build_upsert_batch."""

    def test_op_order(self) -> None:
        """Properties, then types, then entities, then relations."""
        spreadsheet, entity_map = _upsert_inputs()
        batch = build_upsert_batch(spreadsheet, entity_map, build_relations(spreadsheet, entity_map))

        kinds = [op.op_type for op in batch.ops]
        assert kinds == [
            OpType.CREATE_PROPERTY,
            OpType.CREATE_PROPERTY,
            OpType.CREATE_TYPE,
            OpType.CREATE_ENTITY,
            OpType.CREATE_RELATION,
        ]

    def test_links_counted_not_emitted(self) -> None:
        spreadsheet, entity_map = _upsert_inputs()
        batch = build_upsert_batch(spreadsheet, entity_map, build_relations(spreadsheet, entity_map))

        assert batch.summary.properties_created == 2
        assert batch.summary.properties_linked == 1
        assert batch.summary.entities_created == 1
        assert batch.summary.entities_linked == 2
        assert not any(isinstance(op, CreateProperty) and op.name == "Offices" for op in batch.ops)

    def test_entity_values(self) -> None:
        """Values that fail to parse are skipped; the description goes on the entity."""
        spreadsheet, entity_map = _upsert_inputs()
        batch = build_upsert_batch(spreadsheet, entity_map, [])

        acme = next(op for op in batch.ops if isinstance(op, CreateEntity))
        assert acme.description == "Anvils"
        assert acme.type_ids == (COMPANY_ID,)
        assert [(v.property_id, v.value) for v in acme.values] == [(FOUNDED_ID, TypedValue("date", "2024-01-15"))]

    def test_type_default_properties(self) -> None:
        spreadsheet, entity_map = _upsert_inputs()
        batch = build_upsert_batch(spreadsheet, entity_map, [])

        company = next(op for op in batch.ops if isinstance(op, CreateType))
        assert company.property_ids == (FOUNDED_ID, EMPLOYEES_ID)

    def test_typeless_target_skipped(self) -> None:
        """A target with no row, no types and no remote match is neither created nor related to."""
        spreadsheet, entity_map = _upsert_inputs()
        batch = build_upsert_batch(spreadsheet, entity_map, build_relations(spreadsheet, entity_map))

        assert not any(isinstance(op, CreateEntity) and op.name == "Atlantis" for op in batch.ops)
        relations = [op for op in batch.ops if isinstance(op, CreateRelation)]
        assert [op.to_entity for op in relations] == ["3" * 32]
        assert relations[0].position == "a0"

    def test_to_dict(self) -> None:
        spreadsheet, entity_map = _upsert_inputs()
        data = build_upsert_batch(spreadsheet, entity_map, []).to_dict()

        assert data["ops"][0] == {
            "type": "createProperty",
            "id": FOUNDED_ID,
            "name": "Founded",
            "dataType": "DATE",
            "description": None,
        }
        assert data["summary"]["entities_created"] == 1


class TestBuildUpdateBatch:
    """Tests for build_update_batch."""

    def _diff(self) -> EntityDiff:
        return EntityDiff(
            entity_id="1" * 32,
            entity_name="Acme",
            status=DiffStatus.UPDATED,
            scalar_changes=[
                PropertyDiff(
                    FOUNDED_ID, "Founded", DiffKind.SET, "(not set)", "2024", TypedValue("date", "2024-01-01")
                ),
                PropertyDiff(EMPLOYEES_ID, "Employees", DiffKind.SET, "(not set)", "lots", None),
            ],
            relation_changes=[
                RelationDiff(
                    property_id=OFFICES_ID,
                    property_name="Offices",
                    to_add=[RelationTarget("3" * 32, "Paris")],
                    to_remove=[RelationRemoval("rel-9", "4" * 32, "Berlin")],
                )
            ],
            description_change=PropertyDiff("e" * 32, "Description", DiffKind.SET, None, "Anvils"),
        )

    def test_update_ops(self) -> None:
        batch = build_update_batch([self._diff()])

        update, create, delete = batch.ops
        assert update.op_type == OpType.UPDATE_ENTITY
        assert [v.property_id for v in update.values] == [FOUNDED_ID]
        assert update.description == "Anvils"
        assert isinstance(create, CreateRelation)
        assert create.relation_type == OFFICES_ID
        assert create.to_entity == "3" * 32
        assert isinstance(delete, DeleteRelation)
        assert delete.id == "rel-9"
        assert batch.summary.entities_updated == 1
        assert batch.summary.relations_created == 1
        assert batch.summary.relations_deleted == 1

    def test_skipped_diffs_produce_nothing(self) -> None:
        skipped = EntityDiff(entity_id="2" * 32, entity_name="Globex", status=DiffStatus.SKIPPED)
        assert len(build_update_batch([skipped])) == 0

    def test_update_entity_to_dict(self) -> None:
        update = build_update_batch([self._diff()]).ops[0]
        assert update.to_dict() == {
            "type": "updateEntity",
            "id": "1" * 32,
            "values": [{"property": FOUNDED_ID, "type": "date", "value": "2024-01-01"}],
            "description": "Anvils",
        }
