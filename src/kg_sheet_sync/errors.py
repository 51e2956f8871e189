"""Error taxonomy for reconciliation runs.

Every error raised by the reconciliation core carries an ``ErrorKind`` and a
``fatal`` flag. Callers decide between "collect and report" and "stop now" by
looking at those attributes rather than at the exception class.

- UNRESOLVED_REFERENCE: a declared name the remote store does not know. Always
  collected across the whole input and reported once.
- NOT_FOUND: an entity ID the store reports as absent where existence is
  required.
- FETCH_FAILURE: a network or API failure. Always fatal and immediate; treating
  it as "no data" would silently corrupt a diff or tombstone.
- INVALID_INPUT: malformed spreadsheet content or CLI values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kg_sheet_sync.clients.base import ClientError


class ErrorKind(str, Enum):
    """Category of a reconciliation failure."""

    UNRESOLVED_REFERENCE = "unresolved_reference"
    NOT_FOUND = "not_found"
    FETCH_FAILURE = "fetch_failure"
    INVALID_INPUT = "invalid_input"


class ReferenceRole(str, Enum):
    """Where an unresolved name was declared."""

    ENTITY = "entity"
    RELATION_TARGET = "relation_target"
    PROPERTY = "property"
    TYPE = "type"


@dataclass(frozen=True)
class UnresolvedReference:
    """A single name that could not be resolved.

    Attributes:
        name: Name as written by the curator
        role: What the name was used as
        context: Where it appeared (e.g., 'Entity "Acme" via Headquarters')
    """

    name: str
    role: ReferenceRole
    context: str | None = None

    def __str__(self) -> str:
        if self.context:
            return f"{self.name} ({self.role.value}: {self.context})"
        return f"{self.name} ({self.role.value})"


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT
    fatal: bool = True


class InvalidInputError(ReconcileError):
    """Input that cannot be processed (bad IDs, bad flags, missing tabs)."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, problems: list[str] | None = None):
        self.problems = list(problems or [])
        if self.problems:
            message = message + "\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class UnresolvedReferenceError(ReconcileError):
    """One or more declared names are unknown to the remote store.

    Raised once per run with every unresolved name, never on the first one.
    """

    kind = ErrorKind.UNRESOLVED_REFERENCE
    fatal = False

    def __init__(self, references: list[UnresolvedReference], hint: str | None = None):
        self.references = list(references)
        self.hint = hint
        lines = [f"Cannot resolve {len(self.references)} reference(s):"]
        lines.extend(f"  - {ref}" for ref in self.references)
        if hint:
            lines.append(hint)
        super().__init__("\n".join(lines))

    @property
    def names(self) -> list[str]:
        """Unresolved names in the order they were found."""
        return [ref.name for ref in self.references]


class EntityNotFoundError(ReconcileError):
    """Entities the store reports as absent where existence is required."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity_ids: list[str], space_id: str | None = None):
        self.entity_ids = list(entity_ids)
        self.space_id = space_id
        where = f" in space {space_id}" if space_id else ""
        listing = "\n".join(f"  - {eid}" for eid in self.entity_ids)
        super().__init__(f"{len(self.entity_ids)} entity ID(s) not found{where}:\n{listing}")


class RemoteFetchError(ReconcileError):
    """A remote read failed. Never retried or skipped by the core."""

    kind = ErrorKind.FETCH_FAILURE

    def __init__(
        self,
        entity_id: str,
        error: ClientError,
        entity_name: str | None = None,
        action: str = "fetch details for entity",
    ):
        self.entity_id = entity_id
        self.entity_name = entity_name
        self.error = error
        label = f'"{entity_name}" (ID: {entity_id})' if entity_name else entity_id
        super().__init__(
            f"Failed to {action} {label}: {error.error_code}: {error.error_message}. "
            "Cannot proceed with partial data."
        )


class SpreadsheetValidationError(ReconcileError):
    """The spreadsheet has ERROR-severity validation issues."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, issues: list[object]):
        self.issues = list(issues)
        listing = "\n".join(f"  {issue}" for issue in self.issues)
        super().__init__(f"Spreadsheet validation failed with {len(self.issues)} error(s):\n{listing}")
