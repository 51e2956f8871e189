"""Workbook access: tab lookup and TSV/CSV directory exports.

A workbook is a mapping of tab name to row records (dicts keyed by header,
values as text). Google Sheets and exported directories both produce one.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

# tab name -> rows, each row keyed by column header
Workbook = dict[str, list[dict[str, Any]]]

TAB_FILE_SEPARATORS = {".tsv": "\t", ".csv": ","}


def read_tab_file(path: Path) -> list[dict[str, str]]:
    """Read a single TSV/CSV export as string records.

    Every cell is kept as text (no NA inference), so "NA", "0012" or "1e5"
    reach the parsers unchanged.
    """
    sep = TAB_FILE_SEPARATORS[path.suffix.lower()]
    frame = pd.read_csv(path, sep=sep, dtype=str, keep_default_na=False, encoding="utf-8")
    frame = frame.loc[:, [not str(col).startswith("Unnamed:") for col in frame.columns]]
    records: list[dict[str, str]] = frame.to_dict(orient="records")
    return records


def load_tabs_dir(directory: Path) -> Workbook:
    """Load every ``*.tsv`` / ``*.csv`` file of a directory as a tab.

    The tab name is the file stem, so ``Entities to delete.tsv`` becomes the
    "Entities to delete" tab. Files load in name order.

    Raises:
        FileNotFoundError: If the directory does not exist or holds no exports
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Tabs directory not found: {directory}")

    workbook: Workbook = {}
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in TAB_FILE_SEPARATORS:
            continue
        workbook[path.stem] = read_tab_file(path)
        logger.debug(f"Read {len(workbook[path.stem])} rows from {path.name}")

    if not workbook:
        raise FileNotFoundError(f"No .tsv or .csv files found in {directory}")

    logger.info(f"Loaded {len(workbook)} tabs from {directory}")
    return workbook


def find_tab(workbook: Workbook, name: str) -> str | None:
    """Return the actual tab name matching ``name`` case-insensitively."""
    target = name.strip().lower()
    for tab in workbook:
        if tab.strip().lower() == target:
            return tab
    return None


def get_cell(row: dict[str, Any], column: str) -> Any:
    """Read a cell by column name, ignoring case and surrounding whitespace."""
    target = column.strip().lower()
    for key, value in row.items():
        if str(key).strip().lower() == target:
            return value
    return None


def header(rows: list[dict[str, Any]]) -> list[str]:
    """Column names of a tab, in sheet order."""
    if not rows:
        return []
    return [str(key) for key in rows[0]]
