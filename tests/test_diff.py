"""Tests for the update diff engine."""

import dataclasses

import pytest

from kg_sheet_sync.clients.base import HTTP_ERROR, ClientError
from kg_sheet_sync.config import DESCRIPTION_PROPERTY_ID
from kg_sheet_sync.errors import EntityNotFoundError, RemoteFetchError, UnresolvedReferenceError
from kg_sheet_sync.models import (
    DataType,
    DiffKind,
    DiffStatus,
    EntitySnapshot,
    OutgoingRelation,
    PropertyDefinition,
    PropertyValue,
    RelationTarget,
    ResolutionAction,
    ResolutionEntry,
    ResolvedProperty,
    SpreadsheetEntity,
)
from kg_sheet_sync.reconcile.diff import (
    NOT_SET,
    compute_entity_diffs,
    diff_entity,
    diff_relation_property,
    diff_scalar_property,
)

from conftest import TARGET_SPACE, FakeQueryClient

ACME_ID = "1" * 32
PARIS_ID = "2" * 32
BERLIN_ID = "3" * 32
ROME_ID = "4" * 32

FOUNDED_ID = "a" * 32
REVENUE_ID = "b" * 32
OFFICES_ID = "c" * 32


def _link(name: str, entity_id: str) -> ResolutionEntry:
    return ResolutionEntry(name=name, id=entity_id, action=ResolutionAction.LINK)


def _prop(name: str, prop_id: str, data_type: DataType) -> ResolvedProperty:
    return ResolvedProperty(
        name=name,
        id=prop_id,
        action=ResolutionAction.LINK,
        definition=PropertyDefinition(name=name, data_type=data_type),
    )


PROPERTIES = {
    "founded": _prop("Founded", FOUNDED_ID, DataType.DATE),
    "revenue": _prop("Revenue", REVENUE_ID, DataType.FLOAT),
    "offices": _prop("Offices", OFFICES_ID, DataType.RELATION),
}

ENTITIES = {
    "acme": _link("Acme", ACME_ID),
    "paris": _link("Paris", PARIS_ID),
    "berlin": _link("Berlin", BERLIN_ID),
    "rome": _link("Rome", ROME_ID),
}


def _relation(relation_id: str, target_id: str, type_id: str = OFFICES_ID) -> OutgoingRelation:
    return OutgoingRelation(relation_id=relation_id, type_id=type_id, target_id=target_id)


class TestDiffScalarProperty:
    """Tests for scalar comparison."""

    def test_equivalent_dates_unchanged(self) -> None:
        """Different spellings of one day are UNCHANGED."""
        live = [PropertyValue(property_id=FOUNDED_ID, datetime="2024-01-15T00:00:00.000Z")]
        result = diff_scalar_property("Founded", FOUNDED_ID, "Jan 15, 2024", live, DataType.DATE)
        assert result.kind == DiffKind.UNCHANGED

    def test_float_within_epsilon_unchanged(self) -> None:
        live = [PropertyValue(property_id=REVENUE_ID, number=3.0)]
        result = diff_scalar_property("Revenue", REVENUE_ID, "3.0000000001", live, DataType.FLOAT)
        assert result.kind == DiffKind.UNCHANGED

    def test_float_change_is_set(self) -> None:
        live = [PropertyValue(property_id=REVENUE_ID, number=3.0)]
        result = diff_scalar_property("Revenue", REVENUE_ID, "3.1", live, DataType.FLOAT)
        assert result.kind == DiffKind.SET
        assert result.previous == "3"
        assert result.typed_value is not None
        assert result.typed_value.value == 3.1

    def test_missing_live_value(self) -> None:
        """A property with no live value is SET with the not-set marker."""
        result = diff_scalar_property("Founded", FOUNDED_ID, "2024-01-15", [], DataType.DATE)
        assert result.kind == DiffKind.SET
        assert result.previous == NOT_SET

    def test_unparseable_value_has_no_typed_value(self) -> None:
        """A cell that does not parse for its kind is SET without a typed value."""
        result = diff_scalar_property("Founded", FOUNDED_ID, "someday", [], DataType.DATE)
        assert result.kind == DiffKind.SET
        assert result.typed_value is None


class TestDiffRelationProperty:
    """Tests for relation set comparison."""

    def test_default_mode_removes_extras(self) -> None:
        """Live {A,B}, desired {A,C}: add C, remove B, keep A."""
        live = [_relation("r1", PARIS_ID), _relation("r2", BERLIN_ID)]
        desired = [RelationTarget(PARIS_ID, "Paris"), RelationTarget(ROME_ID, "Rome")]

        result = diff_relation_property(OFFICES_ID, "Offices", desired, live)

        assert [t.entity_id for t in result.to_add] == [ROME_ID]
        assert [t.entity_id for t in result.unchanged] == [PARIS_ID]
        assert [r.relation_id for r in result.to_remove] == ["r2"]

    def test_additive_mode_never_removes(self) -> None:
        live = [_relation("r1", PARIS_ID), _relation("r2", BERLIN_ID)]
        desired = [RelationTarget(PARIS_ID, "Paris"), RelationTarget(ROME_ID, "Rome")]

        result = diff_relation_property(OFFICES_ID, "Offices", desired, live, additive=True)

        assert [t.entity_id for t in result.to_add] == [ROME_ID]
        assert result.to_remove == []

    def test_other_relation_types_ignored(self) -> None:
        """Only live relations defined by the same property take part."""
        live = [_relation("r9", BERLIN_ID, type_id="f" * 32)]
        result = diff_relation_property(OFFICES_ID, "Offices", [RelationTarget(PARIS_ID, "Paris")], live)
        assert result.to_remove == []
        assert len(result.to_add) == 1

    def test_duplicate_targets_added_once(self) -> None:
        desired = [RelationTarget(PARIS_ID, "Paris"), RelationTarget(PARIS_ID, "paris")]
        result = diff_relation_property(OFFICES_ID, "Offices", desired, [])
        assert len(result.to_add) == 1


class TestDiffEntity:
    """Tests for per-entity diffs."""

    def test_blank_cell_is_no_opinion(self) -> None:
        """A blank cell against a live value produces no diff entry."""
        row = SpreadsheetEntity(name="Acme", properties={"Founded": "  "})
        snapshot = EntitySnapshot(
            id=ACME_ID, name="Acme", values=(PropertyValue(property_id=FOUNDED_ID, datetime="2024-01-15"),)
        )

        diff = diff_entity(row, snapshot, PROPERTIES, ENTITIES)

        assert diff.status == DiffStatus.SKIPPED
        assert diff.scalar_changes == []
        assert diff.relation_changes == []
        assert diff.unchanged_scalar_count == 0

    def test_description_uses_system_property(self) -> None:
        row = SpreadsheetEntity(name="Acme", properties={"Description": "Makes anvils"})
        diff = diff_entity(row, EntitySnapshot(id=ACME_ID, name="Acme"), PROPERTIES, ENTITIES)

        assert diff.status == DiffStatus.UPDATED
        assert diff.description_change is not None
        assert diff.description_change.property_id == DESCRIPTION_PROPERTY_ID
        assert diff.scalar_changes == []

    def test_unchanged_counts(self) -> None:
        row = SpreadsheetEntity(name="Acme", properties={"Revenue": "3"}, relations={"Offices": ["Paris"]})
        snapshot = EntitySnapshot(
            id=ACME_ID,
            name="Acme",
            values=(PropertyValue(property_id=REVENUE_ID, number=3.0),),
            relations=(_relation("r1", PARIS_ID),),
        )

        diff = diff_entity(row, snapshot, PROPERTIES, ENTITIES)

        assert diff.status == DiffStatus.SKIPPED
        assert diff.unchanged_scalar_count == 1
        assert diff.unchanged_relation_count == 1

    def test_unknown_column_ignored(self) -> None:
        row = SpreadsheetEntity(name="Acme", properties={"Mascot": "Coyote"})
        diff = diff_entity(row, EntitySnapshot(id=ACME_ID, name="Acme"), PROPERTIES, ENTITIES)
        assert diff.status == DiffStatus.SKIPPED


class TestComputeEntityDiffs:
    """Tests for the whole diff pass."""

    def _rows(self) -> list[SpreadsheetEntity]:
        return [
            SpreadsheetEntity(
                name="Acme",
                properties={"Founded": "Jan 15, 2024", "Revenue": "12.5"},
                relations={"Offices": ["Paris", "Rome"]},
            )
        ]

    def test_unresolved_target_halts_before_fetch(self, fake_client: FakeQueryClient) -> None:
        """An unknown relation target stops the run before any snapshot is fetched."""
        rows = [SpreadsheetEntity(name="Acme", relations={"Offices": ["Atlantis", "Paris", "Lemuria"]})]

        with pytest.raises(UnresolvedReferenceError) as exc_info:
            compute_entity_diffs(fake_client, rows, ENTITIES, PROPERTIES, TARGET_SPACE)

        assert exc_info.value.names == ["Atlantis", "Lemuria"]
        assert fake_client.fetches == []

    def test_diff_and_summary(self, fake_client: FakeQueryClient) -> None:
        fake_client.add_snapshot(
            EntitySnapshot(
                id=ACME_ID,
                name="Acme",
                values=(PropertyValue(property_id=FOUNDED_ID, datetime="2024-01-15T00:00:00.000Z"),),
                relations=(_relation("r1", PARIS_ID), _relation("r2", BERLIN_ID)),
            )
        )

        diffs, summary = compute_entity_diffs(fake_client, self._rows(), ENTITIES, PROPERTIES, TARGET_SPACE)

        assert len(diffs) == 1
        diff = diffs[0]
        assert diff.status == DiffStatus.UPDATED
        assert [c.property_name for c in diff.scalar_changes] == ["Revenue"]
        assert diff.unchanged_scalar_count == 1
        assert summary.entities_with_changes == 1
        assert summary.total_scalar_changes == 1
        assert summary.total_relations_added == 1
        assert summary.total_relations_removed == 1
        assert summary.has_changes

    def test_rediff_after_apply_is_skipped(self, fake_client: FakeQueryClient) -> None:
        """Applying every change and diffing again yields SKIPPED."""
        before = EntitySnapshot(id=ACME_ID, name="Acme", relations=(_relation("r2", BERLIN_ID),))
        fake_client.add_snapshot(before)
        diffs, _ = compute_entity_diffs(fake_client, self._rows(), ENTITIES, PROPERTIES, TARGET_SPACE)

        values = tuple(
            PropertyValue(property_id=c.property_id, datetime=c.typed_value.value)
            if c.property_id == FOUNDED_ID
            else PropertyValue(property_id=c.property_id, number=c.typed_value.value)
            for c in diffs[0].scalar_changes
            if c.typed_value is not None
        )
        relations = tuple(
            _relation(f"new-{t.entity_id}", t.entity_id) for r in diffs[0].relation_changes for t in r.to_add
        )
        fake_client.add_snapshot(dataclasses.replace(before, values=values, relations=relations))

        rediffs, summary = compute_entity_diffs(fake_client, self._rows(), ENTITIES, PROPERTIES, TARGET_SPACE)

        assert [d.status for d in rediffs] == [DiffStatus.SKIPPED]
        assert not summary.has_changes

    def test_fetch_failure_is_fatal(self, fake_client: FakeQueryClient) -> None:
        fake_client.fetch_errors[ACME_ID] = ClientError(query="entity", error_code=HTTP_ERROR, error_message="timeout")

        with pytest.raises(RemoteFetchError, match='"Acme"'):
            compute_entity_diffs(fake_client, self._rows(), ENTITIES, PROPERTIES, TARGET_SPACE)

    def test_missing_entity(self, fake_client: FakeQueryClient) -> None:
        """A resolved entity with no state in the space is reported as not found."""
        with pytest.raises(EntityNotFoundError) as exc_info:
            compute_entity_diffs(fake_client, self._rows(), ENTITIES, PROPERTIES, TARGET_SPACE)
        assert exc_info.value.entity_ids == [ACME_ID]
