"""API clients for the remote knowledge-graph store."""

from kg_sheet_sync.clients.base import ClientError, ClientResult
from kg_sheet_sync.clients.geo import GeoClient

__all__ = ["ClientError", "ClientResult", "GeoClient"]
