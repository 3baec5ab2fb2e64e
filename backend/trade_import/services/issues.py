"""Structured row/record issues shared by every import stage."""

from dataclasses import dataclass, replace
from enum import Enum


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ImportIssue:
    """One problem found while importing, precise enough for row-level remediation.

    record_index is the 0-based data row position in the parsed file; it is None
    for file-level issues (parse, detection, configuration).
    """

    message: str
    field: str | None = None
    code: str = "error"
    severity: IssueSeverity = IssueSeverity.ERROR
    record_index: int | None = None
    value: str | None = None

    @classmethod
    def warning(cls, message: str, field: str | None = None, code: str = "warning", value=None):
        return cls(
            message=message,
            field=field,
            code=code,
            severity=IssueSeverity.WARNING,
            value=None if value is None else str(value),
        )

    def at(self, record_index: int | None) -> "ImportIssue":
        """Copy of this issue attached to a data row."""
        return replace(self, record_index=record_index)

    def promoted(self, code: str = "strict_validation") -> "ImportIssue":
        """Copy of a warning turned into a blocking error (strict mode)."""
        return replace(
            self,
            message=f"Strict mode: {self.message}",
            severity=IssueSeverity.ERROR,
            code=code,
        )
