"""Geo GraphQL API client.

A thin, typed wrapper around the Geo knowledge-graph GraphQL endpoint used for
the two reads the reconciliation core needs:

- name search within a space (``search_by_name``)
- full entity detail for one space (``fetch_entity_snapshot``), including the
  relation rows' own IDs, which are what a relation removal is keyed by

Responses are validated with pydantic before being turned into the frozen
domain models in ``kg_sheet_sync.models``. Failures are returned as
``ClientError`` values; "entity does not exist" is reported with error code
NOT_FOUND so callers can tell it apart from a transport or API failure.

Example:
    >>> client = GeoClient.from_settings(Settings.from_env("TESTNET"))
    >>> hits = client.search_by_name("Acme Corp", client.root_space_id)
    >>> if not isinstance(hits, ClientError):
    ...     print([hit.id for hit in hits])
"""

from __future__ import annotations

import logging
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kg_sheet_sync.clients.base import (
    GRAPHQL_ERROR,
    HTTP_ERROR,
    NOT_FOUND,
    PARSE_ERROR,
    ClientError,
    ClientResult,
    HTTPClientBase,
)
from kg_sheet_sync.config import (
    API_ENDPOINTS,
    DEFAULT_NETWORK,
    RESOLVE_BATCH_SIZE,
    ROOT_SPACE_ID,
    SEARCH_PAGE_SIZE,
    Settings,
)
from kg_sheet_sync.models import (
    EntitySnapshot,
    IncomingRelation,
    OutgoingRelation,
    PropertyValue,
    RemoteEntity,
    TypeRef,
)
from kg_sheet_sync.values import normalize_name

logger = logging.getLogger(__name__)

SEARCH_QUERY = """
  query Search($query: String!, $spaceId: UUID, $limit: Int) {
    search(query: $query, spaceId: $spaceId, first: $limit) {
      id
      name
      spaceIds
      types {
        id
        name
      }
    }
  }
"""

# `relations` / `backlinks` connections (not the *List variants) expose the
# relation row's own ID, which relation removal needs.
ENTITY_DETAILS_QUERY = """
  query EntityDetails($id: UUID!, $spaceId: UUID!) {
    entity(id: $id) {
      id
      name
      typeIds
      valuesList(filter: { spaceId: { is: $spaceId } }) {
        propertyId
        text
        boolean
        float
        datetime
        point
        schedule
      }
      relations(filter: { spaceId: { is: $spaceId } }) {
        nodes {
          id
          typeId
          toEntity {
            id
            name
          }
        }
      }
      backlinks(filter: { spaceId: { is: $spaceId } }) {
        nodes {
          id
          typeId
          fromEntity {
            id
            name
          }
        }
      }
    }
  }
"""


# =============================================================================
# Response schemas
# =============================================================================


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TypePayload(_Schema):
    id: str
    name: str | None = None


class SearchHitPayload(_Schema):
    id: str
    name: str | None = None
    space_ids: list[str] = Field(default_factory=list, alias="spaceIds")
    types: list[TypePayload] = Field(default_factory=list)

    def to_model(self) -> RemoteEntity:
        return RemoteEntity(
            id=self.id,
            name=self.name or "",
            types=tuple(TypeRef(id=t.id, name=t.name) for t in self.types),
            space_ids=tuple(self.space_ids),
        )


class EntityRefPayload(_Schema):
    id: str
    name: str | None = None


class ValuePayload(_Schema):
    property_id: str = Field(alias="propertyId")
    text: str | None = None
    boolean: bool | None = None
    number: float | None = Field(default=None, alias="float")
    datetime: str | None = None
    point: str | None = None
    schedule: str | None = None


class RelationPayload(_Schema):
    id: str
    type_id: str = Field(alias="typeId")
    to_entity: EntityRefPayload = Field(alias="toEntity")


class BacklinkPayload(_Schema):
    id: str
    type_id: str = Field(alias="typeId")
    from_entity: EntityRefPayload = Field(alias="fromEntity")


class RelationConnection(_Schema):
    nodes: list[RelationPayload] = Field(default_factory=list)


class BacklinkConnection(_Schema):
    nodes: list[BacklinkPayload] = Field(default_factory=list)


class EntityDetailsPayload(_Schema):
    id: str
    name: str | None = None
    type_ids: list[str] = Field(default_factory=list, alias="typeIds")
    values: list[ValuePayload] = Field(default_factory=list, alias="valuesList")
    relations: RelationConnection = Field(default_factory=RelationConnection)
    backlinks: BacklinkConnection = Field(default_factory=BacklinkConnection)

    def to_model(self) -> EntitySnapshot:
        return EntitySnapshot(
            id=self.id,
            name=self.name,
            type_ids=tuple(self.type_ids),
            values=tuple(PropertyValue(**v.model_dump()) for v in self.values),
            relations=tuple(
                OutgoingRelation(
                    relation_id=r.id,
                    type_id=r.type_id,
                    target_id=r.to_entity.id,
                    target_name=r.to_entity.name,
                )
                for r in self.relations.nodes
            ),
            backlinks=tuple(
                IncomingRelation(
                    relation_id=b.id,
                    type_id=b.type_id,
                    source_id=b.from_entity.id,
                    source_name=b.from_entity.name,
                )
                for b in self.backlinks.nodes
            ),
        )


# =============================================================================
# Client
# =============================================================================


class GeoClient(HTTPClientBase):
    """Client for the Geo GraphQL API.

    Read-only: the client never submits writes. No caching is done between
    calls, so every run sees live state.
    """

    BASE_URL = API_ENDPOINTS[DEFAULT_NETWORK]

    def __init__(
        self,
        base_url: str | None = None,
        root_space_id: str = ROOT_SPACE_ID,
        page_size: int = SEARCH_PAGE_SIZE,
        **kwargs: Any,
    ):
        """Initialize the client.

        Args:
            base_url: GraphQL endpoint (defaults to TESTNET)
            root_space_id: Universal namespace searched for every name
            page_size: Maximum hits requested per search
            **kwargs: Passed to HTTPClientBase (min_interval, timeout, user_agent, pool_maxsize;
                the pool defaults to one connection per concurrent name lookup)
        """
        kwargs.setdefault("pool_maxsize", RESOLVE_BATCH_SIZE)
        super().__init__(base_url=base_url, **kwargs)
        self.root_space_id = root_space_id
        self.page_size = page_size

    @classmethod
    def from_settings(cls, settings: Settings) -> GeoClient:
        return cls(base_url=settings.api_url, root_space_id=settings.root_space_id, timeout=settings.timeout)

    def execute(self, query: str, variables: dict[str, Any], label: str) -> ClientResult[dict[str, Any]] | ClientError:
        """Run a GraphQL query.

        Args:
            query: GraphQL document
            variables: Query variables
            label: Short description used in errors and logs

        Returns:
            ClientResult wrapping the ``data`` object, or ClientError
        """
        try:
            payload = self._post_json({"query": query, "variables": variables})
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            return ClientError(query=label, error_code=HTTP_ERROR, error_message=str(e), status_code=status)
        except requests.RequestException as e:
            return ClientError(query=label, error_code=HTTP_ERROR, error_message=str(e))
        except ValueError as e:
            return ClientError(query=label, error_code=PARSE_ERROR, error_message=f"Invalid JSON: {e}")

        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            return ClientError(query=label, error_code=GRAPHQL_ERROR, error_message=messages)

        data = payload.get("data")
        if not isinstance(data, dict):
            return ClientError(query=label, error_code=PARSE_ERROR, error_message="Response has no data object")
        return ClientResult(data=data, query=label)

    def search_by_name(self, name: str, space_id: str | None) -> list[RemoteEntity] | ClientError:
        """Search a space for entities whose name matches exactly (normalized).

        Args:
            name: Name to search for
            space_id: Space to search; None searches without a space filter

        Returns:
            Matching entities in the order the API ranked them (possibly empty),
            or ClientError on failure
        """
        result = self.execute(
            SEARCH_QUERY,
            {"query": name, "spaceId": space_id, "limit": self.page_size},
            label=f"search:{name}",
        )
        if isinstance(result, ClientError):
            logger.warning(f'Failed to search for entity "{name}": {result.error_message}')
            return result

        try:
            hits = [SearchHitPayload.model_validate(hit) for hit in result.data.get("search") or []]
        except ValidationError as e:
            return ClientError(query=result.query, error_code=PARSE_ERROR, error_message=str(e))

        wanted = normalize_name(name)
        return [hit.to_model() for hit in hits if hit.name and normalize_name(hit.name) == wanted]

    def fetch_entity_snapshot(self, entity_id: str, space_id: str) -> EntitySnapshot | ClientError:
        """Fetch properties, relations, backlinks and type IDs for one entity.

        Args:
            entity_id: 32-char hex entity ID
            space_id: Space whose values and relations are returned

        Returns:
            EntitySnapshot, ClientError(NOT_FOUND) if the entity does not exist,
            or another ClientError on failure
        """
        result = self.execute(ENTITY_DETAILS_QUERY, {"id": entity_id, "spaceId": space_id}, label=f"entity:{entity_id}")
        if isinstance(result, ClientError):
            logger.warning(f'Failed to fetch entity details for "{entity_id}": {result.error_message}')
            return result

        entity = result.data.get("entity")
        if entity is None:
            return ClientError(query=result.query, error_code=NOT_FOUND, error_message=f"Entity {entity_id} not found")

        try:
            return EntityDetailsPayload.model_validate(entity).to_model()
        except ValidationError as e:
            return ClientError(query=result.query, error_code=PARSE_ERROR, error_message=str(e))

    def test_connection(self) -> bool:
        """Check that the endpoint answers a trivial query."""
        result = self.execute("{ __typename }", {}, label="ping")
        if isinstance(result, ClientError):
            logger.error(f"API connection test failed: {result.error_message}")
            return False
        return True
