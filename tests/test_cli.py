"""Tests for the kg-sheet-sync command-line interface."""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import google.auth.exceptions
import gspread
import pandas as pd
import pytest
import requests
from click.testing import CliRunner

from kg_sheet_sync.cli import main
from kg_sheet_sync.models import EntitySnapshot, OutgoingRelation, PropertyValue, RemoteEntity
from kg_sheet_sync.ops import OperationBatch
from kg_sheet_sync.pipelines import UpdatePlan, plan_update
from kg_sheet_sync.sheets import DELETE_TAB, Workbook

from conftest import TARGET_SPACE, FakeQueryClient

ACME_ID = "1" * 32
PARIS_ID = "2" * 32
FOUNDED_ID = "a" * 32
PROPERTIES = [("Founded", "DATE"), ("Offices", "RELATION", "City")]


def write_tabs(workbook: Workbook, directory: Path) -> Path:
    """Write each tab as ``<tab>.tsv``, the way a sheet export looks."""
    directory.mkdir(parents=True, exist_ok=True)
    for tab, rows in workbook.items():
        pd.DataFrame(rows).to_csv(directory / f"{tab}.tsv", sep="\t", index=False)
    return directory


@pytest.fixture
def geo(fake_client: FakeQueryClient) -> Iterator[MagicMock]:
    """Patch GeoClient so every command talks to the fake client."""
    with patch("kg_sheet_sync.cli.GeoClient") as mock_geo:
        mock_geo.from_settings.return_value.__enter__.return_value = fake_client
        yield mock_geo


@pytest.fixture
def company_workbook(make_workbook: Callable[..., Workbook]) -> Workbook:
    return make_workbook(
        {
            "Company": [{"Entity name": "Acme", "Founded": "2024-01-15", "Offices": "Paris"}],
            "City": [{"Entity name": "Paris", "Founded": "", "Offices": ""}],
        },
        properties=PROPERTIES,
    )


class TestMain:
    """Tests for the command group."""

    def test_cli_help(self) -> None:
        """Test CLI --help lists every command."""
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("upsert", "update", "delete"):
            assert command in result.output

    def test_requires_exactly_one_source(self, geo: MagicMock) -> None:
        runner = CliRunner()
        with runner.isolated_filesystem():
            Path("tabs").mkdir()
            neither = runner.invoke(main, ["upsert", "--dry-run"])
            both = runner.invoke(main, ["upsert", "--dry-run", "--sheet", "Companies", "--tabs-dir", "tabs"])

        assert neither.exit_code == 2
        assert "exactly one of --sheet or --tabs-dir" in neither.output
        assert both.exit_code == 2

    def test_missing_tabs_dir(self) -> None:
        runner = CliRunner()
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["upsert", "--tabs-dir", "nope"])
        assert result.exit_code == 2


class TestUpsertCommand:
    """Tests for the upsert command."""

    def test_dry_run_writes_report_only(self, geo: MagicMock, company_workbook: Workbook) -> None:
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(company_workbook, Path("tabs"))
            result = runner.invoke(main, ["upsert", "--tabs-dir", "tabs", "--dry-run"])

            assert result.exit_code == 0, result.output
            assert "Entities:   2 new, 0 linked" in result.output
            assert "Dry run complete" in result.output
            assert len(list(Path("reports").glob("upsert-dryrun-*.json"))) == 1
            assert not list(Path("reports").glob("upsert-batch-*.json"))

    def test_publish_with_yes(self, geo: MagicMock, company_workbook: Workbook) -> None:
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(company_workbook, Path("tabs"))
            result = runner.invoke(main, ["upsert", "--tabs-dir", "tabs", "--yes", "--output", "out"])

            assert result.exit_code == 0, result.output
            assert "Batch written to" in result.output
            assert len(list(Path("out").glob("upsert-batch-*.json"))) == 1
            assert len(list(Path("out").glob("upsert-2*.json"))) == 1

    def test_declined_prompt(self, geo: MagicMock, company_workbook: Workbook) -> None:
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(company_workbook, Path("tabs"))
            result = runner.invoke(main, ["upsert", "--tabs-dir", "tabs"], input="n\n")

            assert result.exit_code == 0
            assert "Upsert cancelled." in result.output
            assert not Path("reports").exists()

    def test_validation_errors_exit_nonzero(self, geo: MagicMock, make_workbook: Callable[..., Workbook]) -> None:
        workbook = make_workbook(
            {"Company": [{"Entity name": "Acme", "Mood": "happy"}]}, properties=[("Mood", "EMOTION")]
        )
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(workbook, Path("tabs"))
            result = runner.invoke(main, ["upsert", "--tabs-dir", "tabs"])

        assert result.exit_code == 1
        assert "ERROR:" in result.output
        assert "Invalid data type" in result.output

    def test_reads_google_sheet(self, geo: MagicMock, company_workbook: Workbook) -> None:
        runner = CliRunner()
        with (
            patch("kg_sheet_sync.cli.load_workbook", return_value=company_workbook) as mock_load,
            runner.isolated_filesystem(),
        ):
            result = runner.invoke(main, ["upsert", "--sheet", "Curated companies", "--dry-run"])

        assert result.exit_code == 0, result.output
        mock_load.assert_called_once_with("Curated companies")

    @pytest.mark.parametrize(
        "error",
        [
            gspread.exceptions.SpreadsheetNotFound("not shared"),
            google.auth.exceptions.RefreshError("invalid_grant"),
            requests.ConnectionError("offline"),
        ],
    )
    def test_google_sheet_errors_exit_cleanly(self, geo: MagicMock, error: Exception) -> None:
        """Sheets and credential failures print one ERROR line instead of a traceback."""
        runner = CliRunner()
        with patch("kg_sheet_sync.cli.load_workbook", side_effect=error), runner.isolated_filesystem():
            result = runner.invoke(main, ["upsert", "--sheet", "Curated companies", "--dry-run"])

        assert result.exit_code == 1
        assert "ERROR: Could not" in result.output
        assert "'Curated companies'" in result.output
        assert not isinstance(result.exception, type(error))
        geo.from_settings.assert_not_called()


class TestUpdateCommand:
    """Tests for the update command."""

    def _store(self, client: FakeQueryClient, founded: str) -> None:
        client.add(RemoteEntity(id=ACME_ID, name="Acme"), TARGET_SPACE)
        client.add(RemoteEntity(id=PARIS_ID, name="Paris"), TARGET_SPACE)
        client.add(RemoteEntity(id=FOUNDED_ID, name="Founded"))
        client.add(RemoteEntity(id="b" * 32, name="Offices"))
        client.add_snapshot(EntitySnapshot(id=PARIS_ID, name="Paris"))
        client.add_snapshot(
            EntitySnapshot(
                id=ACME_ID,
                name="Acme",
                values=(PropertyValue(property_id=FOUNDED_ID, datetime=founded),),
                relations=(OutgoingRelation("r1", "b" * 32, PARIS_ID, "Paris"),),
            )
        )

    def test_no_changes(self, geo: MagicMock, fake_client: FakeQueryClient, company_workbook: Workbook) -> None:
        self._store(fake_client, "2024-01-15")
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(company_workbook, Path("tabs"))
            result = runner.invoke(main, ["update", "--tabs-dir", "tabs", "--yes"])

            assert result.exit_code == 0, result.output
            assert "No changes detected" in result.output
            assert not Path("reports").exists()

    def test_changes_published(
        self, geo: MagicMock, fake_client: FakeQueryClient, company_workbook: Workbook
    ) -> None:
        self._store(fake_client, "1999-01-01")
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(company_workbook, Path("tabs"))
            result = runner.invoke(main, ["update", "--tabs-dir", "tabs", "--yes"])

            assert result.exit_code == 0, result.output
            assert '    SET Founded: "1999-01-01" -> "2024-01-15"' in result.output
            assert len(list(Path("reports").glob("update-batch-*.json"))) == 1

    def test_unparseable_cell_fails_validation(
        self, geo: MagicMock, fake_client: FakeQueryClient, make_workbook: Callable[..., Workbook]
    ) -> None:
        """A cell that cannot become a typed value stops the run instead of planning an empty SET."""
        self._store(fake_client, "1999-01-01")
        workbook = make_workbook(
            {"Company": [{"Entity name": "Acme", "Founded": "someday", "Offices": "Paris"}]}, properties=PROPERTIES
        )
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(workbook, Path("tabs"))
            result = runner.invoke(main, ["update", "--tabs-dir", "tabs", "--yes"])

            assert result.exit_code == 1
            assert '"someday" is not a valid DATE value' in result.output
            assert not Path("reports").exists()
        assert fake_client.fetches == []

    def test_changes_without_operations_are_not_published(
        self, geo: MagicMock, fake_client: FakeQueryClient, company_workbook: Workbook
    ) -> None:
        """Publishing is decided by the operations built, not by the diff summary."""
        self._store(fake_client, "1999-01-01")

        def plan_without_ops(*args: Any, **kwargs: Any) -> UpdatePlan:
            plan = plan_update(*args, **kwargs)
            plan.batch = OperationBatch()
            return plan

        runner = CliRunner()
        with patch("kg_sheet_sync.cli.plan_update", side_effect=plan_without_ops), runner.isolated_filesystem():
            write_tabs(company_workbook, Path("tabs"))
            result = runner.invoke(main, ["update", "--tabs-dir", "tabs", "--yes"])

            assert result.exit_code == 0, result.output
            assert '    SET Founded: "1999-01-01" -> "2024-01-15"' in result.output
            assert "No changes detected" in result.output
            assert not Path("reports").exists()

    def test_unknown_row_fails_before_fetching(
        self, geo: MagicMock, fake_client: FakeQueryClient, company_workbook: Workbook
    ) -> None:
        """A row with no live entity stops the run before any snapshot is read."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_tabs(company_workbook, Path("tabs"))
            result = runner.invoke(main, ["update", "--tabs-dir", "tabs", "--yes"])

        assert result.exit_code == 1
        assert "ERROR:" in result.output
        assert fake_client.fetches == []


class TestDeleteCommand:
    """Tests for the delete command."""

    def _tabs(self, rows: list[dict[str, str]]) -> Path:
        return write_tabs({DELETE_TAB: rows}, Path("tabs"))

    def test_publish_with_yes(self, geo: MagicMock, fake_client: FakeQueryClient) -> None:
        fake_client.add_snapshot(
            EntitySnapshot(
                id=ACME_ID, name="Acme", values=(PropertyValue(property_id=FOUNDED_ID, datetime="2024-01-15"),)
            )
        )
        runner = CliRunner()
        with runner.isolated_filesystem():
            self._tabs([{"Entity ID": ACME_ID, "Space ID": TARGET_SPACE}])
            result = runner.invoke(main, ["delete", "--tabs-dir", "tabs", "--yes"])

            assert result.exit_code == 0, result.output
            assert "Acme" in result.output
            assert len(list(Path(".snapshots").glob("delete-snapshot-*.json"))) == 1
            assert len(list(Path("reports").glob("delete-batch-*.json"))) == 1

    def test_dry_run(self, geo: MagicMock, fake_client: FakeQueryClient) -> None:
        fake_client.add_snapshot(EntitySnapshot(id=ACME_ID, name="Acme"))
        runner = CliRunner()
        with runner.isolated_filesystem():
            self._tabs([{"Entity ID": ACME_ID}])
            result = runner.invoke(main, ["delete", "--tabs-dir", "tabs", "--space", TARGET_SPACE, "--dry-run"])

            assert result.exit_code == 0, result.output
            assert len(list(Path("reports").glob("delete-dryrun-*.json"))) == 1
            assert not Path(".snapshots").exists()

    def test_missing_entity_writes_remaining_ids(self, geo: MagicMock, fake_client: FakeQueryClient) -> None:
        fake_client.add_snapshot(EntitySnapshot(id=ACME_ID, name="Acme"))
        runner = CliRunner()
        with runner.isolated_filesystem():
            self._tabs([{"Entity ID": ACME_ID}, {"Entity ID": PARIS_ID}])
            result = runner.invoke(main, ["delete", "--tabs-dir", "tabs", "--space", TARGET_SPACE, "--yes"])

            assert result.exit_code == 1
            assert "Delete failed" in result.output
            (remaining,) = Path("reports").glob("remaining-entities-*.csv")
            assert pd.read_csv(remaining, dtype=str)["entity_id"].tolist() == [ACME_ID, PARIS_ID]

    def test_space_mismatch(self, geo: MagicMock, fake_client: FakeQueryClient) -> None:
        runner = CliRunner()
        with runner.isolated_filesystem():
            self._tabs([{"Entity ID": ACME_ID, "Space ID": TARGET_SPACE}])
            result = runner.invoke(main, ["delete", "--tabs-dir", "tabs", "--space", "6" * 32])

        assert result.exit_code == 1
        assert "Space ID mismatch" in result.output
        assert fake_client.fetches == []
