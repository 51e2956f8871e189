"""Shared pieces for the remote query clients.

- ``ClientError`` / ``ClientResult``: failures are returned as values, never
  raised, so batched callers can inspect every outcome after a barrier
- ``HTTPClientBase``: one ``requests`` session per client, JSON POSTs with a
  timeout over a connection pool shared by worker threads
- ``QueryClient``: the two reads the reconciliation core depends on

There are no retries at this level; the caller decides whether an error is fatal.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

import requests
import requests.adapters

if TYPE_CHECKING:
    from kg_sheet_sync.models import EntitySnapshot, RemoteEntity

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL = 0.0  # seconds between requests; 0 disables spacing
DEFAULT_TIMEOUT = 30.0
DEFAULT_POOL_MAXSIZE = 10  # connections kept per host
DEFAULT_USER_AGENT = "kg-sheet-sync/0.1.0"

NOT_FOUND = "NOT_FOUND"
HTTP_ERROR = "HTTP_ERROR"
GRAPHQL_ERROR = "GRAPHQL_ERROR"
PARSE_ERROR = "PARSE_ERROR"


@dataclass
class ClientError:
    """A failed remote read.

    Attributes:
        query: Label of the read, e.g. "search:Acme" or "entity:<id>"
        error_code: NOT_FOUND, HTTP_ERROR, GRAPHQL_ERROR or PARSE_ERROR
        error_message: Human-readable detail
        status_code: HTTP status, when the server answered with one
    """

    query: str
    error_code: str
    error_message: str
    status_code: int | None = None

    @property
    def is_not_found(self) -> bool:
        """True when the store answered and the thing does not exist."""
        return self.error_code == NOT_FOUND


T = TypeVar("T")


@dataclass
class ClientResult(Generic[T]):
    data: T
    query: str


class HTTPClientBase:
    """Session owner for JSON-over-HTTP clients.

    Worker threads of one batch share the session. Its connection pool holds
    ``pool_maxsize`` connections per host, so size it to the largest batch
    that runs concurrently or requests beyond it open throwaway connections.
    Request spacing is serialized by a lock.
    """

    BASE_URL: str = ""

    def __init__(
        self,
        base_url: str | None = None,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str | None = None,
        pool_maxsize: int = DEFAULT_POOL_MAXSIZE,
    ):
        self.base_url = base_url or self.BASE_URL
        self.min_interval = min_interval
        self.timeout = timeout
        self._last_request = 0.0
        self._lock = threading.Lock()
        self._session = requests.Session()
        adapter = requests.adapters.HTTPAdapter(pool_connections=1, pool_maxsize=pool_maxsize)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": user_agent or DEFAULT_USER_AGENT,
            }
        )

    def _throttle(self) -> None:
        if self.min_interval <= 0:
            return
        with self._lock:
            wait = self.min_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                time.sleep(wait)
            self._last_request = time.monotonic()

    def _post_json(self, body: dict[str, Any]) -> dict[str, Any]:
        """POST ``body`` to the endpoint and decode the JSON reply.

        Raises:
            requests.RequestException: On transport errors and non-2xx replies
            ValueError: If the reply is not JSON
        """
        self._throttle()
        logger.debug(f"POST {self.base_url}")
        response = self._session.post(self.base_url, json=body, timeout=self.timeout)
        response.raise_for_status()
        payload: dict[str, Any] = response.json()
        return payload

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "HTTPClientBase":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class QueryClient(Protocol):
    """Read-side interface the reconciliation core depends on.

    ``GeoClient`` implements it; tests substitute an in-memory fake.
    """

    root_space_id: str

    def search_by_name(self, name: str, space_id: str | None) -> "list[RemoteEntity] | ClientError": ...

    def fetch_entity_snapshot(self, entity_id: str, space_id: str) -> "EntitySnapshot | ClientError": ...
