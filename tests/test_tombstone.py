"""Tests for the tombstone builder."""

import pytest

from kg_sheet_sync.clients.base import HTTP_ERROR, ClientError
from kg_sheet_sync.errors import EntityNotFoundError, ErrorKind, RemoteFetchError
from kg_sheet_sync.models import EntitySnapshot, IncomingRelation, OutgoingRelation, PropertyValue
from kg_sheet_sync.ops import DeleteRelation, OpType, UpdateEntity
from kg_sheet_sync.reconcile.tombstone import build_tombstone_batch, fetch_existing_snapshots

from conftest import TARGET_SPACE, FakeQueryClient

X_ID = "1" * 32
Y_ID = "2" * 32
Z_ID = "3" * 32
WORKS_AT = "a" * 32
NAME_PROP = "b" * 32
TYPES_PROP = "c" * 32


def _x() -> EntitySnapshot:
    return EntitySnapshot(
        id=X_ID,
        name="X",
        values=(
            PropertyValue(property_id=NAME_PROP, text="X"),
            PropertyValue(property_id=NAME_PROP, text="X again"),
        ),
        relations=(
            OutgoingRelation(relation_id="R", type_id=WORKS_AT, target_id=Y_ID, target_name="Y"),
            OutgoingRelation(relation_id="T", type_id=TYPES_PROP, target_id="d" * 32, target_name="Person"),
        ),
    )


def _y() -> EntitySnapshot:
    return EntitySnapshot(
        id=Y_ID,
        name="Y",
        values=(PropertyValue(property_id=NAME_PROP, text="Y"),),
        backlinks=(
            IncomingRelation(relation_id="R", type_id=WORKS_AT, source_id=X_ID, source_name="X"),
            IncomingRelation(relation_id="S", type_id=WORKS_AT, source_id=Z_ID, source_name="Z"),
        ),
    )


class TestBuildTombstoneBatch:
    """Tests for build_tombstone_batch."""

    def test_shared_relation_removed_once(self) -> None:
        """X -> Y via R with both targeted yields exactly one removal for R."""
        batch, summary = build_tombstone_batch([_x(), _y()])

        removed = [op.id for op in batch.ops if isinstance(op, DeleteRelation)]
        assert removed.count("R") == 1
        assert sorted(removed) == ["R", "S", "T"]
        assert summary.relations_to_delete == 2
        assert summary.backlinks_to_delete == 1
        assert summary.total_relations == 3

    def test_removals_before_unsets(self) -> None:
        batch, _ = build_tombstone_batch([_x(), _y()])

        kinds = [op.op_type for op in batch.ops]
        last_delete = max(i for i, kind in enumerate(kinds) if kind == OpType.DELETE_RELATION)
        first_unset = min(i for i, kind in enumerate(kinds) if kind == OpType.UPDATE_ENTITY)
        assert last_delete < first_unset

    def test_unset_distinct_property_ids(self) -> None:
        """Each entity gets one unset op over its distinct property IDs."""
        batch, summary = build_tombstone_batch([_x()])

        unsets = [op for op in batch.ops if isinstance(op, UpdateEntity)]
        assert len(unsets) == 1
        assert unsets[0].id == X_ID
        assert unsets[0].unset == (NAME_PROP,)
        assert summary.properties_to_unset == 1

    def test_empty_entity_has_no_ops(self) -> None:
        batch, summary = build_tombstone_batch([EntitySnapshot(id=Z_ID, name=None)])
        assert len(batch) == 0
        assert summary.entities_processed == 1

    def test_batch_summary_counts(self) -> None:
        batch, _ = build_tombstone_batch([_x(), _y()])
        assert batch.summary.relations_deleted == 3
        assert batch.summary.properties_unset == 2
        assert batch.count(OpType.UPDATE_ENTITY) == 2


class TestFetchExistingSnapshots:
    """Tests for tombstone validation."""

    def test_returns_snapshots_in_order(self, fake_client: FakeQueryClient) -> None:
        fake_client.add_snapshot(_x())
        fake_client.add_snapshot(_y())

        snapshots = fetch_existing_snapshots(fake_client, [Y_ID, X_ID], TARGET_SPACE)

        assert [s.id for s in snapshots] == [Y_ID, X_ID]

    def test_all_missing_ids_reported(self, fake_client: FakeQueryClient) -> None:
        """Every absent ID is listed in one error."""
        fake_client.add_snapshot(_x())
        missing_one, missing_two = "e" * 32, "f" * 32

        with pytest.raises(EntityNotFoundError) as exc_info:
            fetch_existing_snapshots(fake_client, [missing_one, X_ID, missing_two], TARGET_SPACE, batch_size=1)

        assert exc_info.value.entity_ids == [missing_one, missing_two]
        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert TARGET_SPACE in str(exc_info.value)

    def test_fetch_failure_is_fatal(self, fake_client: FakeQueryClient) -> None:
        """A transport failure is never treated as "entity missing"."""
        fake_client.add_snapshot(_x())
        fake_client.fetch_errors[Y_ID] = ClientError(query="entity", error_code=HTTP_ERROR, error_message="reset")

        with pytest.raises(RemoteFetchError) as exc_info:
            fetch_existing_snapshots(fake_client, [X_ID, Y_ID], TARGET_SPACE)

        assert exc_info.value.kind == ErrorKind.FETCH_FAILURE
        assert "Cannot proceed with partial data" in str(exc_info.value)
