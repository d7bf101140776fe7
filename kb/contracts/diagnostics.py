"""
Validation Diagnostics

Structured findings produced by the validator. A report is `ok` iff it
holds no ERROR diagnostics; warnings never block.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueKind(Enum):
    """What class of rule a diagnostic reports on."""
    MALFORMED_INPUT = "malformed_input"
    PROVENANCE_VIOLATION = "provenance_violation"
    IDENTIFIER_VIOLATION = "identifier_violation"
    DOMAIN_VIOLATION = "domain_violation"
    REFERENCE_VIOLATION = "reference_violation"
    DERIVED_INCONSISTENCY = "derived_inconsistency"
    ORPHAN_DRIFT = "orphan_drift"
    MIGRATION_GAP = "migration_gap"
    IO = "io"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    kind: IssueKind
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ValidationReport:
    """Immutable outcome of validating one document."""
    diagnostics: Tuple[Diagnostic, ...]
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def errors(self) -> List[str]:
        return [d.message for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[str]:
        return [d.message for d in self.diagnostics if d.severity is Severity.WARNING]

    @property
    def ok(self) -> bool:
        return not any(d.severity is Severity.ERROR for d in self.diagnostics)

    def errors_of_kind(self, kind: IssueKind) -> List[str]:
        return [
            d.message for d in self.diagnostics
            if d.severity is Severity.ERROR and d.kind is kind
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "errors": self.errors,
            "warnings": self.warnings,
            "summary": dict(self.summary),
        }
