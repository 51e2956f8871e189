"""Curator workbook loading, parsing and validation.

Workbooks come from Google Sheets (``gsheets.load_workbook``) or from a
directory of TSV/CSV exports (``tabs.load_tabs_dir``).
"""

from kg_sheet_sync.sheets.parsing import (
    DELETE_TAB,
    EntityIdParseResult,
    check_required_tabs,
    parse_entity_ids,
    parse_spreadsheet,
)
from kg_sheet_sync.sheets.tabs import Workbook, load_tabs_dir
from kg_sheet_sync.sheets.validation import (
    IssueType,
    Severity,
    ValidationIssue,
    ValidationReport,
    format_validation_report,
    validate_spreadsheet,
)

__all__ = [
    "DELETE_TAB",
    "EntityIdParseResult",
    "IssueType",
    "Severity",
    "ValidationIssue",
    "ValidationReport",
    "Workbook",
    "check_required_tabs",
    "format_validation_report",
    "load_tabs_dir",
    "parse_entity_ids",
    "parse_spreadsheet",
    "validate_spreadsheet",
]
