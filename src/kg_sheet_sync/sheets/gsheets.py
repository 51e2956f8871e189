"""Read curator workbooks straight from Google Sheets.

A service account needs read access to the sheet. Its key file is taken from
GOOGLE_APPLICATION_CREDENTIALS, falling back to gspread's default location
(~/.config/gspread/service_account.json). Only read-only scopes are requested.

Example:
    >>> workbook = load_workbook("Curated companies")
    >>> sorted(workbook)
    ['Companies', 'Metadata', 'Properties', 'Types']
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import gspread
import pandas as pd
from google.oauth2.service_account import Credentials

from kg_sheet_sync.sheets.tabs import Workbook

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]

DEFAULT_CREDENTIALS = Path(".config") / "gspread" / "service_account.json"

# Sheet keys are long opaque strings; titles rarely are
SHEET_KEY_MIN_LENGTH = 31


def find_credentials(credentials_path: str | None = None) -> str:
    """Locate the service account key file.

    Raises:
        FileNotFoundError: If neither the argument, the environment nor the
            default location provides one
    """
    path = credentials_path or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if path:
        return path
    default_path = Path.home() / DEFAULT_CREDENTIALS
    if default_path.exists():
        return str(default_path)
    raise FileNotFoundError(
        "No Google credentials found. Set GOOGLE_APPLICATION_CREDENTIALS "
        f"or place a service account key in ~/{DEFAULT_CREDENTIALS}"
    )


def get_gspread_client(credentials_path: str | None = None) -> gspread.Client:
    creds = Credentials.from_service_account_file(find_credentials(credentials_path), scopes=SCOPES)
    return gspread.authorize(creds)


def get_spreadsheet(name_or_id: str, credentials_path: str | None = None) -> gspread.Spreadsheet:
    """Open a spreadsheet by key when the argument looks like one, else by title."""
    client = get_gspread_client(credentials_path)
    if len(name_or_id) >= SHEET_KEY_MIN_LENGTH and " " not in name_or_id:
        return client.open_by_key(name_or_id)
    return client.open(name_or_id)


def worksheet_records(worksheet: gspread.Worksheet) -> list[dict[str, str]]:
    """Read one worksheet as a list of dicts with every cell as text.

    Uses ``get_all_values`` rather than ``get_all_records`` so that numeric
    looking cells (IDs, zip codes, dates) reach the parsers exactly as typed.
    Columns with a blank header are dropped.
    """
    values = worksheet.get_all_values()
    if not values:
        return []
    header, *rows = values
    frame = pd.DataFrame(rows, columns=header, dtype=str)
    frame = frame.loc[:, [str(col).strip() != "" for col in frame.columns]]
    return frame.fillna("").to_dict(orient="records")


def load_workbook(name_or_id: str, credentials_path: str | None = None) -> Workbook:
    """Read every tab of a spreadsheet.

    Args:
        name_or_id: Spreadsheet title or ID
        credentials_path: Optional path to service account credentials

    Returns:
        Tab name -> row records, in tab order
    """
    spreadsheet = get_spreadsheet(name_or_id, credentials_path)
    workbook: Workbook = {}
    for worksheet in spreadsheet.worksheets():
        workbook[worksheet.title] = worksheet_records(worksheet)
        logger.debug(f"Read {len(workbook[worksheet.title])} rows from tab {worksheet.title}")
    logger.info(f"Loaded {len(workbook)} tabs from Google Sheet {spreadsheet.title}")
    return workbook
