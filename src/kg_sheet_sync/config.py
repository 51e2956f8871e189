"""Runtime configuration for kg-sheet-sync.

Settings are read from the environment (a ``.env`` file is loaded first, so
local credentials stay out of the shell history). Command-line flags take
precedence over environment variables, which take precedence over defaults.

Environment variables:
    GEO_NETWORK: TESTNET or MAINNET (default: TESTNET)
    GEO_API_URL: Explicit GraphQL endpoint, overrides the network default
    GEO_ROOT_SPACE_ID: Root space searched for every name lookup
    GEO_DESCRIPTION_PROPERTY_ID: System property holding entity descriptions
    GOOGLE_APPLICATION_CREDENTIALS: Service account file for Google Sheets
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from kg_sheet_sync.errors import InvalidInputError

load_dotenv()

NETWORKS = ("TESTNET", "MAINNET")
DEFAULT_NETWORK = "TESTNET"

API_ENDPOINTS: dict[str, str] = {
    "TESTNET": "https://testnet-api.geobrowser.io/graphql",
    "MAINNET": "https://api.geobrowser.io/graphql",
}

EXPLORER_URLS: dict[str, str] = {
    "TESTNET": "https://testnet.geobrowser.io",
    "MAINNET": "https://geobrowser.io",
}

# System identifiers shared by every space
ROOT_SPACE_ID = os.environ.get("GEO_ROOT_SPACE_ID", "a19c345ab9866679b001d7d2138d88a1")
DESCRIPTION_PROPERTY_ID = os.environ.get("GEO_DESCRIPTION_PROPERTY_ID", "9b1f76ff9711404c861e59dc3fa7d037")

# Placeholder written into metadata when the curator leaves Space ID blank
PLACEHOLDER_SPACE_ID = "placeholder_space_id_for_dry_run"

# Bounded fan-out sizes for remote lookups
RESOLVE_BATCH_SIZE = 20
SNAPSHOT_BATCH_SIZE = 10
VALIDATE_BATCH_SIZE = 5

# Maximum hits requested per name search
SEARCH_PAGE_SIZE = 10

FLOAT_EPSILON = 1e-9


def resolve_network(flag_value: str | None = None) -> str:
    """Resolve the target network from a CLI flag, GEO_NETWORK, or the default.

    Args:
        flag_value: Value passed on the command line, if any

    Returns:
        "TESTNET" or "MAINNET"

    Raises:
        InvalidInputError: If the value is not a known network
    """
    network = (flag_value or os.environ.get("GEO_NETWORK") or DEFAULT_NETWORK).upper()
    if network not in NETWORKS:
        raise InvalidInputError(f'Invalid network: "{network}". Must be TESTNET or MAINNET.')
    return network


@dataclass(frozen=True)
class Settings:
    """Resolved settings for a single run.

    Attributes:
        network: TESTNET or MAINNET
        api_url: GraphQL endpoint used by the query client
        root_space_id: Universal namespace searched for every name
        timeout: Request timeout in seconds
    """

    network: str = DEFAULT_NETWORK
    api_url: str = API_ENDPOINTS[DEFAULT_NETWORK]
    root_space_id: str = ROOT_SPACE_ID
    timeout: float = 30.0

    @classmethod
    def from_env(cls, network: str | None = None) -> Settings:
        """Build settings from the environment, letting ``network`` override GEO_NETWORK."""
        resolved = resolve_network(network)
        api_url = os.environ.get("GEO_API_URL") or API_ENDPOINTS[resolved]
        return cls(network=resolved, api_url=api_url, root_space_id=ROOT_SPACE_ID)

    @property
    def explorer_url(self) -> str:
        return EXPLORER_URLS[self.network]
