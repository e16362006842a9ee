"""
Validation Issues

Validation issues are produced upstream (field validation is not part of the
decision core) and consumed by risk assessment and the decision table.

Severity drives the decision:
- CRITICAL: invoice is rejected
- ERROR: counts toward compliance risk and lowers decision confidence
- WARNING / INFO: reported in reasoning only
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional

from ..errors import MemoryValidationError


class IssueSeverity(Enum):
    """Severity levels for validation issues."""
    CRITICAL = auto()   # Invoice cannot be processed
    ERROR = auto()      # Likely incorrect, needs review
    WARNING = auto()    # Possibly incorrect
    INFO = auto()       # Informational

    @property
    def is_blocking(self) -> bool:
        """ERROR and CRITICAL issues count against the invoice."""
        return self in (IssueSeverity.ERROR, IssueSeverity.CRITICAL)


class ValidationIssueType(Enum):
    """Kinds of validation issues."""
    MISSING_FIELD = auto()
    INVALID_FORMAT = auto()
    BUSINESS_RULE_VIOLATION = auto()
    INCONSISTENT_DATA = auto()
    SUSPICIOUS_VALUE = auto()


def _enum_by_name(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls[str(value).upper()]
    except KeyError:
        allowed = ', '.join(m.name for m in enum_cls)
        raise MemoryValidationError(
            f"{field_name} must be one of [{allowed}], got {value!r}",
            field_name=field_name,
            value=value,
        ) from None


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation issue raised against an invoice field."""
    severity: IssueSeverity
    issue_type: ValidationIssueType
    affected_field: str
    description: str
    suggested_resolution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'severity': self.severity.name,
            'issue_type': self.issue_type.name,
            'affected_field': self.affected_field,
            'description': self.description,
            'suggested_resolution': self.suggested_resolution,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValidationIssue':
        if 'severity' not in data or 'description' not in data:
            raise MemoryValidationError("Validation issue needs 'severity' and 'description'")
        return cls(
            severity=_enum_by_name(IssueSeverity, data['severity'], 'severity'),
            issue_type=_enum_by_name(
                ValidationIssueType, data.get('issue_type', 'BUSINESS_RULE_VIOLATION'), 'issue_type'
            ),
            affected_field=data.get('affected_field', ''),
            description=data['description'],
            suggested_resolution=data.get('suggested_resolution'),
        )

    def __str__(self) -> str:
        parts = [f"[{self.severity.name}]"]
        if self.affected_field:
            parts.append(f"{self.affected_field}:")
        parts.append(self.description)
        return ' '.join(parts)


def count_by_severity(issues: Iterable[ValidationIssue]) -> Dict[IssueSeverity, int]:
    counts = {severity: 0 for severity in IssueSeverity}
    for issue in issues:
        counts[issue.severity] += 1
    return counts


def blocking_issues(issues: Iterable[ValidationIssue]) -> List[ValidationIssue]:
    """ERROR and CRITICAL issues, in input order."""
    return [issue for issue in issues if issue.severity.is_blocking]
