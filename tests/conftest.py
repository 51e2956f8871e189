"""Pytest configuration for kg-sheet-sync tests.

This file is automatically loaded by pytest and sets up test fixtures
and configuration that are shared across all test modules.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from dotenv import load_dotenv

from kg_sheet_sync.clients.base import NOT_FOUND, ClientError
from kg_sheet_sync.models import EntitySnapshot, RemoteEntity
from kg_sheet_sync.sheets.tabs import Workbook
from kg_sheet_sync.values import normalize_name

# Load .env file so integration tests can reach a configured endpoint
# This runs before any tests are collected
load_dotenv()

ROOT_SPACE = "f" * 32
TARGET_SPACE = "5" * 32


class FakeQueryClient:
    """In-memory stand-in for GeoClient.

    Entities are registered per space; searches match on normalized name.
    Every call is recorded so tests can assert what was (not) fetched.
    """

    def __init__(self, root_space_id: str = ROOT_SPACE):
        self.root_space_id = root_space_id
        self.entities: dict[str, list[RemoteEntity]] = {}
        self.snapshots: dict[str, EntitySnapshot] = {}
        self.search_errors: dict[str, ClientError] = {}
        self.fetch_errors: dict[str, ClientError] = {}
        self.searches: list[tuple[str, str | None]] = []
        self.fetches: list[str] = []

    def add(self, entity: RemoteEntity, space_id: str | None = None) -> RemoteEntity:
        self.entities.setdefault(space_id or self.root_space_id, []).append(entity)
        return entity

    def add_snapshot(self, snapshot: EntitySnapshot) -> EntitySnapshot:
        self.snapshots[snapshot.id] = snapshot
        return snapshot

    def search_by_name(self, name: str, space_id: str | None) -> list[RemoteEntity] | ClientError:
        self.searches.append((name, space_id))
        key = normalize_name(name)
        if key in self.search_errors:
            return self.search_errors[key]
        return [e for e in self.entities.get(space_id or "", []) if normalize_name(e.name) == key]

    def fetch_entity_snapshot(self, entity_id: str, space_id: str) -> EntitySnapshot | ClientError:
        self.fetches.append(entity_id)
        if entity_id in self.fetch_errors:
            return self.fetch_errors[entity_id]
        snapshot = self.snapshots.get(entity_id)
        if snapshot is None:
            return ClientError(query=f"entity:{entity_id}", error_code=NOT_FOUND, error_message="not found")
        return snapshot


@pytest.fixture
def fake_client() -> FakeQueryClient:
    """Empty fake query client."""
    return FakeQueryClient()


def _property_row(name: str, data_type: str = "TEXT", points_to: str = "") -> dict[str, str]:
    return {
        "Property name": name,
        "Data type": data_type,
        "Renderable type": "",
        "Points to type(s)": points_to,
        "Description": "",
    }


@pytest.fixture
def make_workbook() -> Callable[..., Workbook]:
    """Factory for in-memory workbooks.

    ``properties`` is a list of (name, data type[, points to]) tuples;
    ``entity_tabs`` maps tab name -> row dicts.
    """

    def factory(
        entity_tabs: dict[str, list[dict[str, Any]]] | None = None,
        properties: list[tuple[str, ...]] | None = None,
        types: list[str] | None = None,
        space_id: str = TARGET_SPACE,
        operation_type: str = "",
    ) -> Workbook:
        workbook: Workbook = {
            "Metadata": [
                {"Field": "Space ID", "Value": space_id},
                {"Field": "Space type", "Value": "Personal"},
                {"Field": "Author", "Value": "curator"},
                {"Field": "Operation type", "Value": operation_type},
            ],
            "Types": [
                {"Type name": name, "Space": "", "Description": "", "Default properties": ""}
                for name in (types if types is not None else ["Company", "City"])
            ],
            "Properties": [_property_row(*spec) for spec in (properties or [])],
        }
        workbook.update(entity_tabs or {})
        return workbook

    return factory
