"""Spreadsheet validation.

Checks a parsed workbook before any remote lookup and collects every issue
into a ``ValidationReport``. ERROR issues block a run; WARNING issues are
reported and the run continues. Relation targets that are not rows are only
warned about here: the resolver decides whether the store knows them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path  # noqa: TC003 - Path is used at runtime
from typing import Any

from kg_sheet_sync.config import PLACEHOLDER_SPACE_ID
from kg_sheet_sync.errors import SpreadsheetValidationError
from kg_sheet_sync.models import DataType, ParsedSpreadsheet, SpreadsheetEntity
from kg_sheet_sync.sheets.parsing import ENTITY_NAME_COLUMN, METADATA_TAB, PROPERTIES_TAB, SPACE_TYPES, TYPES_TAB
from kg_sheet_sync.values import convert_to_typed_value, is_blank, is_valid_id, normalize_name

logger = logging.getLogger(__name__)

DESCRIPTION_COLUMN = "description"


class Severity(str, Enum):
    """Severity levels for validation issues."""

    ERROR = "error"  # Blocks the run
    WARNING = "warning"  # Suspicious but publishable
    INFO = "info"  # Informational finding


class IssueType(str, Enum):
    """Types of validation issues."""

    # Missing data
    MISSING_VALUE = "missing_value"  # Required cell is empty
    MISSING_SPACE = "missing_space"  # No target space configured

    # Format issues
    INVALID_FORMAT = "invalid_format"  # Value doesn't match expected format
    UNKNOWN_DATA_TYPE = "unknown_data_type"  # Data type cell names no known kind

    # Duplicates
    DUPLICATE_NAME = "duplicate_name"  # Same normalized name declared twice

    # References
    UNKNOWN_COLUMN = "unknown_column"  # Entity column not declared in Properties
    UNKNOWN_TYPE = "unknown_type"  # Entity type neither declared nor a tab name
    UNKNOWN_TARGET = "unknown_target"  # Relation target is not a row in the workbook


@dataclass
class ValidationIssue:
    """A single validation issue found in a tab.

    Attributes:
        sheet: Tab name
        row: Row number in the tab (1-indexed, header is row 1); 0 for tab-level issues
        field: Column name where the issue was found
        issue_type: Category of the issue
        severity: How serious the issue is
        message: Human-readable description of the issue
        value: The problematic value (if applicable)
        suggestion: Suggested fix (if applicable)
    """

    sheet: str
    row: int
    field: str
    issue_type: IssueType
    severity: Severity
    message: str
    value: str | None = None
    suggestion: str | None = None

    def __str__(self) -> str:
        """Format issue for display."""
        loc = f"{self.sheet}:{self.row}" if self.row else self.sheet
        sev = self.severity.value.upper()
        return f"[{sev}] {loc} [{self.issue_type.value}] {self.field}: {self.message}"


@dataclass
class ValidationReport:
    """Aggregated validation results for one workbook.

    Attributes:
        sheets_checked: Tab names that were validated
        rows_checked: Total number of rows checked
        issues: All validation issues found
        stats: Counts by issue type
    """

    sheets_checked: list[str] = field(default_factory=list)
    rows_checked: int = 0
    issues: list[ValidationIssue] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    def add_issue(self, issue: ValidationIssue) -> None:
        """Add an issue and update stats."""
        self.issues.append(issue)
        key = issue.issue_type.value
        self.stats[key] = self.stats.get(key, 0) + 1

    @property
    def error_count(self) -> int:
        """Count of ERROR severity issues."""
        return sum(1 for i in self.issues if i.severity == Severity.ERROR)

    @property
    def warning_count(self) -> int:
        """Count of WARNING severity issues."""
        return sum(1 for i in self.issues if i.severity == Severity.WARNING)

    @property
    def is_valid(self) -> bool:
        return self.error_count == 0

    def get_issues_by_severity(self, severity: Severity) -> list[ValidationIssue]:
        """Get all issues of a specific severity."""
        return [i for i in self.issues if i.severity == severity]

    def get_issues_by_type(self, issue_type: IssueType) -> list[ValidationIssue]:
        """Get all issues of a specific type."""
        return [i for i in self.issues if i.issue_type == issue_type]

    def raise_for_errors(self) -> None:
        """Raise SpreadsheetValidationError listing every ERROR issue, if any."""
        errors = self.get_issues_by_severity(Severity.ERROR)
        if errors:
            raise SpreadsheetValidationError(list(errors))


def _validate_metadata(data: ParsedSpreadsheet, report: ValidationReport) -> None:
    metadata = data.metadata
    if metadata.space_id == PLACEHOLDER_SPACE_ID:
        report.add_issue(
            ValidationIssue(
                sheet=METADATA_TAB,
                row=0,
                field="Space ID",
                issue_type=IssueType.MISSING_SPACE,
                severity=Severity.WARNING,
                message="Space ID is required for publishing (placeholder used for dry-run)",
            )
        )
    elif not is_valid_id(metadata.space_id):
        report.add_issue(
            ValidationIssue(
                sheet=METADATA_TAB,
                row=0,
                field="Space ID",
                issue_type=IssueType.INVALID_FORMAT,
                severity=Severity.ERROR,
                message="Space ID must be a 32-character hex string",
                value=metadata.space_id,
            )
        )

    if metadata.space_type not in SPACE_TYPES:
        report.add_issue(
            ValidationIssue(
                sheet=METADATA_TAB,
                row=0,
                field="Space type",
                issue_type=IssueType.INVALID_FORMAT,
                severity=Severity.ERROR,
                message=f'Invalid space type: "{metadata.space_type}". Must be "Personal" or "DAO"',
                value=metadata.space_type,
            )
        )


def _validate_types(data: ParsedSpreadsheet, report: ValidationReport) -> None:
    seen: set[str] = set()
    for index, type_def in enumerate(data.types):
        key = normalize_name(type_def.name)
        if key in seen:
            report.add_issue(
                ValidationIssue(
                    sheet=TYPES_TAB,
                    row=index + 2,
                    field="Type name",
                    issue_type=IssueType.DUPLICATE_NAME,
                    severity=Severity.WARNING,
                    message=f'Duplicate type name: "{type_def.name}"',
                    value=type_def.name,
                )
            )
        seen.add(key)
    report.rows_checked += len(data.types)


def _validate_properties(data: ParsedSpreadsheet, report: ValidationReport) -> None:
    seen: set[str] = set()
    valid = ", ".join(t.value for t in DataType)
    for index, prop in enumerate(data.properties):
        row = index + 2
        key = normalize_name(prop.name)
        if key in seen:
            report.add_issue(
                ValidationIssue(
                    sheet=PROPERTIES_TAB,
                    row=row,
                    field="Property name",
                    issue_type=IssueType.DUPLICATE_NAME,
                    severity=Severity.WARNING,
                    message=f'Duplicate property name: "{prop.name}"',
                    value=prop.name,
                )
            )
        seen.add(key)

        if prop.raw_data_type is not None:
            report.add_issue(
                ValidationIssue(
                    sheet=PROPERTIES_TAB,
                    row=row,
                    field="Data type",
                    issue_type=IssueType.UNKNOWN_DATA_TYPE,
                    severity=Severity.ERROR,
                    message=f'Invalid data type: "{prop.raw_data_type}". Valid types: {valid}',
                    value=prop.raw_data_type,
                )
            )

        if prop.is_relation and not prop.points_to_types:
            report.add_issue(
                ValidationIssue(
                    sheet=PROPERTIES_TAB,
                    row=row,
                    field="Points to type(s)",
                    issue_type=IssueType.MISSING_VALUE,
                    severity=Severity.WARNING,
                    message=f'RELATION property "{prop.name}" should specify target types',
                )
            )
    report.rows_checked += len(data.properties)


def _validate_entities(data: ParsedSpreadsheet, report: ValidationReport) -> None:
    for tab, row in data.unnamed_rows:
        report.add_issue(
            ValidationIssue(
                sheet=tab,
                row=row,
                field=ENTITY_NAME_COLUMN,
                issue_type=IssueType.MISSING_VALUE,
                severity=Severity.ERROR,
                message="Entity name is required",
            )
        )

    # Columns whose declared kind parses cells; invalid kinds are reported on the Properties tab
    scalar_types = {
        normalize_name(prop.name): prop.data_type
        for prop in data.properties
        if prop.raw_data_type is None and not prop.is_relation
    }
    first_seen: dict[str, tuple[str, int | None]] = {}
    for entity in data.entities:
        row = entity.row or 0
        if not entity.types:
            report.add_issue(
                ValidationIssue(
                    sheet=entity.source_tab,
                    row=row,
                    field="Types",
                    issue_type=IssueType.MISSING_VALUE,
                    severity=Severity.ERROR,
                    message=f'Entity "{entity.name}" has no types assigned',
                )
            )
        _validate_typed_cells(entity, scalar_types, report)

        key = normalize_name(entity.name)
        if key not in first_seen:
            first_seen[key] = (entity.source_tab, entity.row)
            continue
        prev_tab, prev_row = first_seen[key]
        if prev_tab == entity.source_tab:
            report.add_issue(
                ValidationIssue(
                    sheet=entity.source_tab,
                    row=row,
                    field=ENTITY_NAME_COLUMN,
                    issue_type=IssueType.DUPLICATE_NAME,
                    severity=Severity.ERROR,
                    message=f'Duplicate entity "{entity.name}" in same tab (row {prev_row})',
                    value=entity.name,
                )
            )
        else:
            report.add_issue(
                ValidationIssue(
                    sheet=entity.source_tab,
                    row=row,
                    field=ENTITY_NAME_COLUMN,
                    issue_type=IssueType.DUPLICATE_NAME,
                    severity=Severity.WARNING,
                    message=f'Entity "{entity.name}" also appears in {prev_tab}',
                    value=entity.name,
                )
            )
    report.rows_checked += len(data.entities)


def _validate_typed_cells(
    entity: SpreadsheetEntity, scalar_types: dict[str, DataType], report: ValidationReport
) -> None:
    """A filled cell that does not parse as its column's kind would publish nothing."""
    for column, raw in entity.properties.items():
        data_type = scalar_types.get(normalize_name(column))
        if data_type is None or is_blank(raw) or convert_to_typed_value(raw, data_type) is not None:
            continue
        report.add_issue(
            ValidationIssue(
                sheet=entity.source_tab,
                row=entity.row or 0,
                field=column,
                issue_type=IssueType.INVALID_FORMAT,
                severity=Severity.ERROR,
                message=f'"{raw.strip()}" is not a valid {data_type.value} value',
                value=raw,
            )
        )


def _validate_entity_columns(data: ParsedSpreadsheet, report: ValidationReport) -> None:
    known = {normalize_name(prop.name) for prop in data.properties}
    warned: set[tuple[str, str]] = set()
    for entity in data.entities:
        for column in [*entity.properties, *entity.relations]:
            key = normalize_name(column)
            if key == DESCRIPTION_COLUMN or key in known or (entity.source_tab, column) in warned:
                continue
            warned.add((entity.source_tab, column))
            report.add_issue(
                ValidationIssue(
                    sheet=entity.source_tab,
                    row=0,
                    field=column,
                    issue_type=IssueType.UNKNOWN_COLUMN,
                    severity=Severity.WARNING,
                    message=f'Column "{column}" is not declared in the Properties tab',
                    suggestion="Add it to the Properties tab or remove it before publishing",
                )
            )


def _validate_references(data: ParsedSpreadsheet, report: ValidationReport) -> None:
    known_entities = {normalize_name(entity.name) for entity in data.entities}
    known_types = {normalize_name(t.name) for t in data.types}
    known_types.update(normalize_name(entity.source_tab) for entity in data.entities)

    for entity in data.entities:
        for type_name in entity.types:
            if normalize_name(type_name) not in known_types:
                report.add_issue(
                    ValidationIssue(
                        sheet=entity.source_tab,
                        row=entity.row or 0,
                        field="Types",
                        issue_type=IssueType.UNKNOWN_TYPE,
                        severity=Severity.ERROR,
                        message=f'Entity "{entity.name}" references unknown type "{type_name}"',
                        value=type_name,
                    )
                )

    points_to = {normalize_name(p.name): p.points_to_types for p in data.properties if p.is_relation}
    warned: set[tuple[str, str, str]] = set()
    for entity in data.entities:
        for column, targets in entity.relations.items():
            expected = points_to.get(normalize_name(column))
            hint = f" (expects: {expected})" if expected else ""
            for target in targets:
                key = (entity.source_tab, column, normalize_name(target))
                if key[2] in known_entities or key in warned:
                    continue
                warned.add(key)
                report.add_issue(
                    ValidationIssue(
                        sheet=entity.source_tab,
                        row=entity.row or 0,
                        field=column,
                        issue_type=IssueType.UNKNOWN_TARGET,
                        severity=Severity.WARNING,
                        message=f'"{target}"{hint} not found in spreadsheet',
                        value=target,
                        suggestion="Ensure it exists in the store or add it to an entity tab",
                    )
                )


def validate_spreadsheet(data: ParsedSpreadsheet) -> ValidationReport:
    """Validate a parsed workbook.

    Args:
        data: Parsed workbook

    Returns:
        ValidationReport with all issues found
    """
    report = ValidationReport(
        sheets_checked=[METADATA_TAB, TYPES_TAB, PROPERTIES_TAB, *dict.fromkeys(e.source_tab for e in data.entities)]
    )
    _validate_metadata(data, report)
    _validate_types(data, report)
    _validate_properties(data, report)
    _validate_entities(data, report)
    _validate_entity_columns(data, report)
    _validate_references(data, report)

    if not report.is_valid:
        logger.error(f"Validation failed with {report.error_count} errors")
    elif report.issues:
        logger.warning(f"Validation passed with {report.warning_count} warnings")
    else:
        logger.info("Validation passed")
    return report


def format_validation_report(report: ValidationReport) -> str:
    """Render issues grouped by severity, errors first."""
    lines = []
    for severity in (Severity.ERROR, Severity.WARNING, Severity.INFO):
        issues = report.get_issues_by_severity(severity)
        if not issues:
            continue
        lines.append(f"{severity.value.upper()}S ({len(issues)}):")
        for issue in issues:
            lines.append(f"  {issue}")
            if issue.suggestion:
                lines.append(f"    -> {issue.suggestion}")
    return "\n".join(lines)


def export_validation_report(report: ValidationReport, path: Path) -> None:
    """Export a validation report to JSON."""
    data: dict[str, Any] = {
        "sheets_checked": report.sheets_checked,
        "rows_checked": report.rows_checked,
        "total_issues": len(report.issues),
        "error_count": report.error_count,
        "warning_count": report.warning_count,
        "stats": report.stats,
        "issues": [
            {
                "sheet": i.sheet,
                "row": i.row,
                "field": i.field,
                "issue_type": i.issue_type.value,
                "severity": i.severity.value,
                "message": i.message,
                "value": i.value,
                "suggestion": i.suggestion,
            }
            for i in report.issues
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Exported validation report to {path}")
